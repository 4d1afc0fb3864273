"""Gateway event classification and cross-process fan-out over topic queues."""

__version__ = "0.1.0"
