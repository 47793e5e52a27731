"""
Static catalogs.

Reference data consumed by the identification and risk layers.
"""

from iotsentinel.catalog.loader import (
    CatalogLoadError,
    load_authorized,
    load_banners,
    load_catalogs,
    load_fingerprints,
    load_oui,
    load_vulnerabilities,
    read_document,
)
from iotsentinel.catalog.models import (
    AuthorizedDevices,
    BannerRule,
    BannerRules,
    CatalogSet,
    FingerprintCatalog,
    FingerprintEntry,
    OUITable,
    VulnerabilityCatalog,
    build_signature,
    normalize_signature,
    oui_prefix,
)

__all__ = [
    # Models
    "AuthorizedDevices",
    "BannerRule",
    "BannerRules",
    "CatalogSet",
    "FingerprintCatalog",
    "FingerprintEntry",
    "OUITable",
    "VulnerabilityCatalog",
    "build_signature",
    "normalize_signature",
    "oui_prefix",
    # Loader
    "CatalogLoadError",
    "load_authorized",
    "load_banners",
    "load_catalogs",
    "load_fingerprints",
    "load_oui",
    "load_vulnerabilities",
    "read_document",
]
