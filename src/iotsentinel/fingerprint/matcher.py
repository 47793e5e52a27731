"""
Fingerprint Matcher.

Classifies a device from what was observed about it. Strategies are tried
in a fixed order and the first success wins:

    1. exact protocol/port signature match against the fingerprint catalog
    2. MAC OUI vendor lookup (manufacturer only)
    3. banner text rules
    4. unidentified

No match is a normal outcome, never an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from iotsentinel.catalog.models import (
    BannerRules,
    FingerprintCatalog,
    OUITable,
    build_signature,
)
from iotsentinel.registry.models import UNKNOWN, Device, IdentificationMethod


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """Result of device identification."""

    manufacturer: str = UNKNOWN
    model: str = UNKNOWN
    device_type: str = UNKNOWN
    firmware_version: str | None = None
    identified_by: IdentificationMethod = IdentificationMethod.UNIDENTIFIED
    signature: str = ""

    @property
    def is_identified(self) -> bool:
        return self.identified_by != IdentificationMethod.UNIDENTIFIED

    def apply_to(self, device: Device) -> None:
        """Copy the classification onto a device record."""
        device.manufacturer = self.manufacturer
        device.model = self.model
        device.device_type = self.device_type
        device.firmware_version = self.firmware_version
        device.identification_method = self.identified_by

    def to_dict(self) -> dict:
        return {
            "manufacturer": self.manufacturer,
            "model": self.model,
            "device_type": self.device_type,
            "firmware_version": self.firmware_version,
            "identified_by": self.identified_by.value,
            "signature": self.signature,
        }


UNIDENTIFIED = Classification()


class FingerprintMatcher:
    """
    Maps observed traffic characteristics to a device classification.

    Stateless apart from statistics; catalogs are never modified.
    """

    def __init__(
        self,
        fingerprints: FingerprintCatalog | None = None,
        oui: OUITable | None = None,
        banners: BannerRules | None = None,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            fingerprints: Signature catalog
            oui: MAC vendor table
            banners: Banner text rules
        """
        self.fingerprints = fingerprints if fingerprints is not None else FingerprintCatalog()
        self.oui = oui if oui is not None else OUITable()
        self.banners = banners if banners is not None else BannerRules()

        self._counts = {method: 0 for method in IdentificationMethod}

    def identify(
        self,
        hardware_address: str,
        protocols: Iterable[str],
        ports: Iterable[int],
        banners: Mapping[int, str] | None = None,
    ) -> Classification:
        """
        Classify a device.

        Args:
            hardware_address: Device MAC address
            protocols: Observed protocol names
            ports: Observed ports
            banners: Banner text keyed by port

        Returns:
            Classification; ``identified_by`` tells which strategy succeeded
        """
        signature = build_signature(protocols, ports)

        result = (
            self._match_signature(signature)
            or self._match_oui(hardware_address, signature)
            or self._match_banner(banners or {}, signature)
            or Classification(signature=signature)
        )

        self._counts[result.identified_by] += 1
        logger.debug(
            "Device %s identified by %s: %s %s (%s)",
            hardware_address, result.identified_by.value,
            result.manufacturer, result.model, result.device_type,
        )
        return result

    def identify_device(self, device: Device) -> Classification:
        """Classify a device record from its accumulated observation state."""
        return self.identify(
            device.hardware_address,
            device.protocols,
            device.all_ports,
            device.banners,
        )

    def _match_signature(self, signature: str) -> Classification | None:
        if not signature:
            return None
        entry = self.fingerprints.lookup(signature)
        if entry is None:
            return None
        return Classification(
            manufacturer=entry.manufacturer,
            model=entry.model,
            device_type=entry.device_type,
            firmware_version=entry.firmware_version,
            identified_by=IdentificationMethod.SIGNATURE_MATCH,
            signature=signature,
        )

    def _match_oui(self, hardware_address: str, signature: str) -> Classification | None:
        vendor = self.oui.lookup(hardware_address)
        if vendor is None:
            return None
        return Classification(
            manufacturer=vendor,
            identified_by=IdentificationMethod.MAC_LOOKUP,
            signature=signature,
        )

    def _match_banner(
        self,
        banners: Mapping[int, str],
        signature: str,
    ) -> Classification | None:
        for port in sorted(banners):
            text = banners[port]
            if not text:
                continue
            for rule in self.banners.rules:
                if rule.matches(text):
                    return Classification(
                        manufacturer=rule.manufacturer,
                        model=rule.model or UNKNOWN,
                        device_type=rule.device_type or UNKNOWN,
                        identified_by=IdentificationMethod.BANNER_GRAB,
                        signature=signature,
                    )
        return None

    def get_statistics(self) -> dict[str, int]:
        """Identification counts per method."""
        return {method.value: count for method, count in self._counts.items()}
