"""
Catalog data models.

Static reference data loaded once at startup: fingerprint signatures,
vulnerability records, the authorized-device allow-list, the MAC vendor
table and banner rules. Every container records whether it was loaded
successfully so a degraded catalog is visible to callers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from iotsentinel.registry.models import VulnerabilityRecord, normalize_hardware_address


SIGNATURE_DELIMITER = "|"


def build_signature(protocols: Iterable[str], ports: Iterable[int]) -> str:
    """
    Build a protocol/port signature string.

    Protocols (upper-cased) and ports are each deduplicated and sorted,
    protocols first, then joined with ``SIGNATURE_DELIMITER``.
    """
    protocol_list = sorted({p.strip().upper() for p in protocols if p and p.strip()})
    port_list = sorted({int(p) for p in ports})
    return SIGNATURE_DELIMITER.join(protocol_list + [str(p) for p in port_list])


def normalize_signature(signature: str) -> str:
    """Rewrite a hand-written catalog key into canonical signature form."""
    protocols = []
    ports = []
    for token in signature.split(SIGNATURE_DELIMITER):
        token = token.strip()
        if token.isdigit():
            ports.append(int(token))
        elif token:
            protocols.append(token)
    return build_signature(protocols, ports)


@dataclass(frozen=True)
class FingerprintEntry:
    """Classification stored against a protocol/port signature."""

    manufacturer: str
    model: str
    device_type: str
    firmware_version: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FingerprintEntry:
        return cls(
            manufacturer=str(data["manufacturer"]),
            model=str(data["model"]),
            device_type=str(data["device_type"]),
            firmware_version=data.get("firmware_version"),
        )


@dataclass
class FingerprintCatalog:
    """Signature string -> classification."""

    signatures: dict[str, FingerprintEntry] = field(default_factory=dict)
    loaded: bool = True
    error: str | None = None

    def lookup(self, signature: str) -> FingerprintEntry | None:
        return self.signatures.get(signature)

    def __len__(self) -> int:
        return len(self.signatures)


@dataclass
class VulnerabilityCatalog:
    """Known vulnerabilities indexed by manufacturer and model."""

    records: list[VulnerabilityRecord] = field(default_factory=list)
    loaded: bool = True
    error: str | None = None

    def for_model(self, manufacturer: str, model: str) -> list[VulnerabilityRecord]:
        """Entries for a manufacturer/model pair, in catalog order."""
        return [
            r for r in self.records
            if r.manufacturer == manufacturer and r.model == model
        ]

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class AuthorizedDevices:
    """Allow-list of hardware addresses."""

    addresses: set[str] = field(default_factory=set)
    loaded: bool = True
    error: str | None = None

    def __post_init__(self) -> None:
        self.addresses = {normalize_hardware_address(a) for a in self.addresses}

    @classmethod
    def of(cls, addresses: Iterable[str]) -> AuthorizedDevices:
        return cls(addresses=set(addresses))

    def __contains__(self, hardware_address: object) -> bool:
        if not isinstance(hardware_address, str):
            return False
        return normalize_hardware_address(hardware_address) in self.addresses

    def __len__(self) -> int:
        return len(self.addresses)


_NON_HEX = re.compile(r"[^0-9A-Fa-f]")


def oui_prefix(address: str) -> str:
    """First three octets of a MAC address or OUI string, as ``AA:BB:CC``."""
    digits = _NON_HEX.sub("", address).upper()[:6]
    return ":".join(digits[i:i + 2] for i in range(0, len(digits), 2))


# Small built-in vendor table used when no OUI file is configured
DEFAULT_OUI_VENDORS: dict[str, str] = {
    "B8:27:EB": "Raspberry Pi Foundation",
    "DC:A6:32": "Raspberry Pi Trading",
    "A0:21:B7": "TP-Link",
    "14:CC:20": "TP-Link",
    "64:70:02": "TP-Link",
    "F8:1A:67": "Ubiquiti",
    "FC:EC:DA": "Ubiquiti",
    "00:17:88": "Philips Lighting",
    "EC:B5:FA": "Philips Lighting",
    "44:65:0D": "Amazon Technologies",
    "F0:D2:F1": "Amazon Technologies",
    "18:B4:30": "Nest Labs",
    "64:16:66": "Nest Labs",
    "BC:AD:28": "Hikvision",
    "C0:56:E3": "Hikvision",
    "3C:EF:8C": "Dahua Technology",
    "00:40:8C": "Axis Communications",
    "AC:CC:8E": "Axis Communications",
    "24:0A:C4": "Espressif",
    "30:AE:A4": "Espressif",
}


@dataclass
class OUITable:
    """MAC address prefix (first three octets) -> vendor name."""

    vendors: dict[str, str] = field(default_factory=dict)
    loaded: bool = True
    error: str | None = None

    def __post_init__(self) -> None:
        self.vendors = {oui_prefix(k): v for k, v in self.vendors.items()}

    def lookup(self, hardware_address: str) -> str | None:
        """Vendor for the address's OUI, or None."""
        return self.vendors.get(oui_prefix(hardware_address))

    @classmethod
    def default(cls) -> OUITable:
        return cls(vendors=dict(DEFAULT_OUI_VENDORS))

    def __len__(self) -> int:
        return len(self.vendors)


@dataclass
class BannerRule:
    """
    Banner text rule.

    ``pattern`` is a case-insensitive substring unless ``regex`` is set.
    """

    pattern: str
    manufacturer: str
    model: str | None = None
    device_type: str | None = None
    regex: bool = False
    _compiled: re.Pattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.regex:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)

    def matches(self, banner: str) -> bool:
        if self._compiled is not None:
            return bool(self._compiled.search(banner))
        return self.pattern.lower() in banner.lower()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BannerRule:
        return cls(
            pattern=str(data["pattern"]),
            manufacturer=str(data["manufacturer"]),
            model=data.get("model"),
            device_type=data.get("device_type"),
            regex=bool(data.get("regex", False)),
        )


DEFAULT_BANNER_RULES: list[BannerRule] = [
    BannerRule("Hikvision-Webs", "Hikvision", device_type="camera"),
    BannerRule("DNVRS-Webs", "Hikvision", device_type="nvr"),
    BannerRule("Dahua", "Dahua Technology", device_type="camera"),
    BannerRule("AXIS", "Axis Communications", device_type="camera"),
    BannerRule("Hue Personal Wireless Lighting", "Philips Lighting", "Hue Bridge", "hub"),
    BannerRule("Mosquitto", "Eclipse", "Mosquitto Broker", "mqtt_broker"),
    BannerRule("RomPager", "Allegro Software", device_type="router"),
    BannerRule("GoAhead-Webs", "Embedthis", device_type="embedded"),
    BannerRule(r"lighttpd.*OpenWrt", "OpenWrt", device_type="router", regex=True),
]


@dataclass
class BannerRules:
    """Ordered banner rules; the first matching rule wins."""

    rules: list[BannerRule] = field(default_factory=list)
    loaded: bool = True
    error: str | None = None

    @classmethod
    def default(cls) -> BannerRules:
        return cls(rules=list(DEFAULT_BANNER_RULES))

    def __len__(self) -> int:
        return len(self.rules)


@dataclass
class CatalogSet:
    """All static catalogs used by the pipeline."""

    fingerprints: FingerprintCatalog = field(default_factory=FingerprintCatalog)
    vulnerabilities: VulnerabilityCatalog = field(default_factory=VulnerabilityCatalog)
    authorized: AuthorizedDevices = field(default_factory=AuthorizedDevices)
    oui: OUITable = field(default_factory=OUITable.default)
    banners: BannerRules = field(default_factory=BannerRules.default)

    @property
    def degraded(self) -> bool:
        """True if any catalog failed to load."""
        return not all(s["catalog_loaded"] for s in self.status().values())

    def status(self) -> dict[str, dict[str, Any]]:
        """Per-catalog load status and size."""
        catalogs = {
            "fingerprints": self.fingerprints,
            "vulnerabilities": self.vulnerabilities,
            "authorized": self.authorized,
            "oui": self.oui,
            "banners": self.banners,
        }
        return {
            name: {
                "catalog_loaded": catalog.loaded,
                "entries": len(catalog),
                "error": catalog.error,
            }
            for name, catalog in catalogs.items()
        }
