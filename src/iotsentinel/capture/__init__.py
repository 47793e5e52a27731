"""
Capture boundary.

Capture backends push normalized observations into per-interface queues.
"""

from iotsentinel.capture.queue import ObservationQueue, QueueClosedError

__all__ = [
    "ObservationQueue",
    "QueueClosedError",
]
