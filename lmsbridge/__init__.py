"""NATS request/reply bridge for a local LM Studio daemon."""

__version__ = "1.0.0"
