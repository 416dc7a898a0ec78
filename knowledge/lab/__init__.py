"""
Laboratory reference catalog.
"""

from .catalog import (
    CONSULTATION_FEE,
    CONSULTATION_SECTION,
    CONSULTATION_TEST_NAME,
    DEFAULT_CATALOG_PATH,
    DEFAULT_TEST_PRICE,
    CatalogTest,
    ReferenceCatalog,
    ReferenceRange,
    get_catalog,
    reset_catalog,
    set_catalog,
)

__all__ = [
    "CONSULTATION_FEE",
    "CONSULTATION_SECTION",
    "CONSULTATION_TEST_NAME",
    "DEFAULT_CATALOG_PATH",
    "DEFAULT_TEST_PRICE",
    "CatalogTest",
    "ReferenceCatalog",
    "ReferenceRange",
    "get_catalog",
    "reset_catalog",
    "set_catalog",
]
