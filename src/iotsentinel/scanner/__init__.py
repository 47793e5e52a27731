"""
Active Scanning.

Interface to the optional active-probe collaborator.
"""

from iotsentinel.scanner.probe import (
    ActiveProber,
    ProbeResult,
    needs_reidentification,
)

__all__ = [
    "ActiveProber",
    "ProbeResult",
    "needs_reidentification",
]
