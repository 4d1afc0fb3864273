"""Wire and event models shared by the producer and the consumers.

``envelope`` holds the packet pushed through the topic queues, ``events`` the
typed gateway dispatches the registry decodes payloads into.
"""

__all__ = ["envelope", "events"]
