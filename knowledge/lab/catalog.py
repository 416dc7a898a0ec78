"""
Laboratory reference catalog.

Maps lab section -> test -> price and reference range, and keeps the registry
of component tests: sub-measurements (e.g. the CBC differential counts) whose
cost rolls into a single billing line for their parent test.

The default catalog is catalog.yaml next to this module. Any mapping of the
same shape can be loaded with ReferenceCatalog.from_yaml() or
ReferenceCatalog.from_dict(), so prices and ranges can change without
touching the workflow engine.

Lookups never fail: an unknown (section, test) pair has no price and no
range. Callers bill it at the default price and classify it as normal.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_CATALOG_PATH = Path(__file__).parent / "catalog.yaml"

DEFAULT_TEST_PRICE = 300.0
CONSULTATION_TEST_NAME = "Patient Registration/Consultation"
CONSULTATION_SECTION = "REGISTRATION"
CONSULTATION_FEE = 150.0


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class ReferenceRange:
    """Reference range for a single test."""
    unit: str = "N/A"
    min: Optional[float] = None
    max: Optional[float] = None
    normal: Optional[str] = None

    @property
    def is_numeric(self) -> bool:
        return self.min is not None or self.max is not None

    def display(self) -> str:
        """Render the range the way it is printed on a result slip."""
        if self.min is not None and self.max is not None:
            return f"{_fmt(self.min)} - {_fmt(self.max)}"
        if self.max is not None:
            return f"< {_fmt(self.max)}"
        if self.min is not None:
            return f"> {_fmt(self.min)}"
        return self.normal or ""


@dataclass(frozen=True)
class CatalogTest:
    """A single orderable (or component) test."""
    section: str
    name: str
    price: Optional[float] = None
    range: Optional[ReferenceRange] = None
    parent: Optional[str] = None

    @property
    def is_component(self) -> bool:
        return self.parent is not None


class ReferenceCatalog:
    """
    Read-only lookup of prices, reference ranges and component relationships.
    """

    def __init__(
        self,
        tests: list[CatalogTest],
        default_price: float = DEFAULT_TEST_PRICE,
        consultation_fee: float = CONSULTATION_FEE,
        consultation_test_name: str = CONSULTATION_TEST_NAME,
        consultation_section: str = CONSULTATION_SECTION,
    ):
        self.default_price = float(default_price)
        self.consultation_fee = float(consultation_fee)
        self.consultation_test_name = consultation_test_name
        self.consultation_section = consultation_section

        self._tests: dict[tuple[str, str], CatalogTest] = {}
        self._sections: dict[str, list[str]] = {}
        for test in tests:
            self._tests[(test.section, test.name)] = test
            self._sections.setdefault(test.section, []).append(test.name)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReferenceCatalog":
        """Build a catalog from the catalog.yaml structure."""
        sections = data.get("sections") or {}
        components = data.get("components") or {}

        parents: dict[tuple[str, str], str] = {}
        for section, groups in components.items():
            for parent, members in (groups or {}).items():
                if parent not in (sections.get(section) or {}):
                    raise ValueError(f"Component parent '{parent}' is not a {section} test")
                for member in members or []:
                    parents[(section, member)] = parent

        tests: list[CatalogTest] = []
        seen: set[tuple[str, str]] = set()
        for section, entries in sections.items():
            for name, entry in (entries or {}).items():
                entry = entry or {}
                price = entry.get("price")
                ref_range = None
                if any(key in entry for key in ("min", "max", "normal", "unit")):
                    ref_range = ReferenceRange(
                        unit=entry.get("unit", "N/A"),
                        min=float(entry["min"]) if entry.get("min") is not None else None,
                        max=float(entry["max"]) if entry.get("max") is not None else None,
                        normal=entry.get("normal"),
                    )
                tests.append(CatalogTest(
                    section=section,
                    name=name,
                    price=float(price) if price is not None else None,
                    range=ref_range,
                    parent=parents.get((section, name)),
                ))
                seen.add((section, name))

        # Components listed without their own range entry still need to be known
        for (section, name), parent in parents.items():
            if (section, name) not in seen:
                tests.append(CatalogTest(section=section, name=name, parent=parent))

        consultation = data.get("consultation") or {}
        return cls(
            tests,
            default_price=data.get("default_price", DEFAULT_TEST_PRICE),
            consultation_fee=consultation.get("fee", CONSULTATION_FEE),
            consultation_test_name=consultation.get("test_name", CONSULTATION_TEST_NAME),
            consultation_section=consultation.get("section", CONSULTATION_SECTION),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ReferenceCatalog":
        """Load a catalog from a YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get(self, section: str, test_name: str) -> Optional[CatalogTest]:
        return self._tests.get((section, test_name))

    def price(self, section: str, test_name: str) -> Optional[float]:
        """Catalog price, or None when the test is not priced."""
        test = self.get(section, test_name)
        return test.price if test else None

    def price_or_default(self, section: str, test_name: str) -> float:
        price = self.price(section, test_name)
        return price if price is not None else self.default_price

    def range(self, section: str, test_name: str) -> Optional[ReferenceRange]:
        test = self.get(section, test_name)
        return test.range if test else None

    def parent_of(self, section: str, test_name: str) -> Optional[str]:
        """Parent test for a component, None for standalone tests."""
        test = self.get(section, test_name)
        return test.parent if test else None

    def is_component(self, section: str, test_name: str) -> bool:
        return self.parent_of(section, test_name) is not None

    def billing_test_name(self, section: str, test_name: str) -> str:
        """The test name that owns the billing line for this test."""
        return self.parent_of(section, test_name) or test_name

    def components_of(self, section: str, parent: str) -> list[str]:
        return [
            name for name in self._sections.get(section, [])
            if self._tests[(section, name)].parent == parent
        ]

    def sections(self) -> list[str]:
        return list(self._sections)

    def tests(self, section: str, include_components: bool = True) -> list[CatalogTest]:
        tests = [self._tests[(section, name)] for name in self._sections.get(section, [])]
        if not include_components:
            tests = [t for t in tests if not t.is_component]
        return tests


# -----------------------------------------------------------------------------
# Singleton
# -----------------------------------------------------------------------------

_catalog: Optional[ReferenceCatalog] = None


def get_catalog() -> ReferenceCatalog:
    """
    Get the active catalog (singleton).

    Loads COGNILAB_CATALOG_PATH when set, the bundled catalog.yaml otherwise.
    """
    global _catalog
    if _catalog is None:
        path = os.environ.get("COGNILAB_CATALOG_PATH") or DEFAULT_CATALOG_PATH
        _catalog = ReferenceCatalog.from_yaml(path)
    return _catalog


def set_catalog(catalog: ReferenceCatalog) -> None:
    """Swap in a different catalog."""
    global _catalog
    _catalog = catalog


def reset_catalog() -> None:
    global _catalog
    _catalog = None
