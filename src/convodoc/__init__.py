"""convodoc: incremental message-stream to documentation-proposal pipeline."""

__version__ = "0.1.0"
