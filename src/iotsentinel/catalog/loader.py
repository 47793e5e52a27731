"""
Catalog file loader.

Parses YAML or JSON catalog files into catalog containers. A missing or
malformed file never aborts startup: the loader returns an empty catalog
flagged with ``loaded=False`` and the error text, so the pipeline runs in
degraded mode ("unidentified everything") instead of crashing.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, TypeVar

import yaml

from iotsentinel.catalog.models import (
    AuthorizedDevices,
    BannerRule,
    BannerRules,
    CatalogSet,
    FingerprintCatalog,
    FingerprintEntry,
    OUITable,
    VulnerabilityCatalog,
    normalize_signature,
)
from iotsentinel.registry.models import VulnerabilityRecord


logger = logging.getLogger(__name__)

C = TypeVar("C")


class CatalogLoadError(Exception):
    """Error parsing a catalog file."""

    pass


def read_document(path: str | Path) -> Any:
    """
    Read a YAML or JSON document.

    JSON is used for ``.json`` files, YAML for everything else.

    Raises:
        FileNotFoundError: If the file doesn't exist
        CatalogLoadError: If the content cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            if path.suffix.lower() == ".json":
                return json.load(f)
            return yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
            raise CatalogLoadError(f"Invalid catalog file {path}: {e}") from e


def _section(data: Any, key: str, kind: type) -> Any:
    """Get a top-level section, accepting a bare section as the document."""
    if data is None:
        return kind()
    if isinstance(data, dict) and key in data:
        data = data[key]
    if not isinstance(data, kind):
        raise CatalogLoadError(f"'{key}' must be a {kind.__name__}")
    return data


def parse_fingerprints(data: Any) -> FingerprintCatalog:
    """Parse ``{signatures: {signature: {manufacturer, model, device_type}}}``."""
    signatures = _section(data, "signatures", dict)
    parsed = {}
    for signature, entry in signatures.items():
        try:
            parsed[normalize_signature(str(signature))] = FingerprintEntry.from_dict(entry)
        except (KeyError, TypeError) as e:
            raise CatalogLoadError(f"Invalid fingerprint entry {signature!r}: {e}") from e
    return FingerprintCatalog(signatures=parsed)


def parse_vulnerabilities(data: Any) -> VulnerabilityCatalog:
    """Parse ``{vulnerabilities: [{manufacturer, model, firmware?, cvss, cve?}]}``."""
    entries = _section(data, "vulnerabilities", list)
    records = []
    for i, entry in enumerate(entries):
        try:
            cvss = float(entry["cvss"])
            if not 0.0 <= cvss <= 10.0:
                raise ValueError(f"cvss must be 0-10, got {cvss}")
            firmware = entry.get("firmware")
            records.append(VulnerabilityRecord(
                manufacturer=str(entry["manufacturer"]),
                model=str(entry["model"]),
                cvss=cvss,
                firmware=str(firmware) if firmware is not None else None,
                cve=entry.get("cve"),
                description=entry.get("description", ""),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogLoadError(f"Invalid vulnerability entry {i}: {e}") from e
    return VulnerabilityCatalog(records=records)


def parse_authorized(data: Any) -> AuthorizedDevices:
    """Parse ``{authorized: [hardware_address, ...]}``."""
    addresses = _section(data, "authorized", list)
    return AuthorizedDevices.of(str(a) for a in addresses)


def parse_oui(data: Any) -> OUITable:
    """Parse ``{vendors: {prefix: vendor}}``."""
    vendors = _section(data, "vendors", dict)
    return OUITable(vendors={str(k): str(v) for k, v in vendors.items()})


def parse_banners(data: Any) -> BannerRules:
    """Parse ``{rules: [{pattern, manufacturer, model?, device_type?, regex?}]}``."""
    entries = _section(data, "rules", list)
    rules = []
    for i, entry in enumerate(entries):
        try:
            rules.append(BannerRule.from_dict(entry))
        except Exception as e:
            raise CatalogLoadError(f"Invalid banner rule {i}: {e}") from e
    return BannerRules(rules=rules)


def _load(
    name: str,
    path: str | Path | None,
    parse: Callable[[Any], C],
    default: Callable[[], C],
) -> C:
    if path is None:
        return default()
    try:
        catalog = parse(read_document(path))
    except (OSError, CatalogLoadError) as e:
        logger.error("Failed to load %s catalog from %s: %s", name, path, e)
        catalog = parse(None)
        catalog.loaded = False
        catalog.error = str(e)
        return catalog
    logger.info("Loaded %s catalog: %d entries", name, len(catalog))
    return catalog


def load_fingerprints(path: str | Path | None) -> FingerprintCatalog:
    return _load("fingerprint", path, parse_fingerprints, FingerprintCatalog)


def load_vulnerabilities(path: str | Path | None) -> VulnerabilityCatalog:
    return _load("vulnerability", path, parse_vulnerabilities, VulnerabilityCatalog)


def load_authorized(path: str | Path | None) -> AuthorizedDevices:
    return _load("authorized device", path, parse_authorized, AuthorizedDevices)


def load_oui(path: str | Path | None) -> OUITable:
    return _load("OUI", path, parse_oui, OUITable.default)


def load_banners(path: str | Path | None) -> BannerRules:
    return _load("banner", path, parse_banners, BannerRules.default)


def load_catalogs(
    fingerprints: str | Path | None = None,
    vulnerabilities: str | Path | None = None,
    authorized: str | Path | None = None,
    oui: str | Path | None = None,
    banners: str | Path | None = None,
) -> CatalogSet:
    """
    Load every catalog.

    Unconfigured catalogs are empty (fingerprints, vulnerabilities,
    allow-list) or built-in defaults (OUI table, banner rules).
    """
    catalogs = CatalogSet(
        fingerprints=load_fingerprints(fingerprints),
        vulnerabilities=load_vulnerabilities(vulnerabilities),
        authorized=load_authorized(authorized),
        oui=load_oui(oui),
        banners=load_banners(banners),
    )
    if catalogs.degraded:
        logger.warning("Running with degraded catalogs: %s", catalogs.status())
    return catalogs
