"""LM Studio-related data models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ModelInfo(BaseModel):
    """Subset of ``GET /api/v0/models/{id}`` needed to locate a model on disk."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default="", description="Model id")
    publisher: str = Field(default="", description="Publisher directory under the models root")

    @field_validator("id", "publisher", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        # The daemon sends null for fields it does not know.
        return "" if value is None else value
