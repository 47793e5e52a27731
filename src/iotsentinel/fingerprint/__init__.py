"""
Device Identification.

Classifies devices from protocol/port signatures, MAC vendor prefixes
and service banners.
"""

from iotsentinel.catalog.models import build_signature
from iotsentinel.fingerprint.matcher import (
    UNIDENTIFIED,
    Classification,
    FingerprintMatcher,
)

__all__ = [
    "UNIDENTIFIED",
    "Classification",
    "FingerprintMatcher",
    "build_signature",
]
