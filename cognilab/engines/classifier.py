"""
Abnormal-value classification for lab results.

Flags a result value as normal, high or low against the catalog reference
range for its (section, test). Qualitative results are only ever flagged
normal: the classifier never reports high/low for data it cannot compare.
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Iterable, Optional

from knowledge.lab import ReferenceCatalog, get_catalog

from cognilab.models import TestResult


class Flag(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    LOW = "low"


# Compared case-insensitively
KNOWN_NORMAL_TEXT = ("negative", "no growth")
# Compared exactly
KNOWN_NORMAL_EXACT = ("Compatible",)

# Leading decimal number, e.g. "7.5 mg/dL" -> 7.5
_LEADING_NUMBER = re.compile(r"^\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")


def parse_numeric(value: object) -> Optional[float]:
    """
    Coerce a result value to a number.

    Accepts numbers and strings that start with a number; trailing units or
    text are ignored. Returns None when there is no leading number.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _LEADING_NUMBER.match(str(value))
        if not match:
            return None
        number = float(match.group(0))
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def is_known_normal_text(value: object) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    return text.lower() in KNOWN_NORMAL_TEXT or text in KNOWN_NORMAL_EXACT


def classify(
    value: object,
    test_name: str,
    section: str,
    catalog: Optional[ReferenceCatalog] = None,
) -> Flag:
    """
    Classify a result value against its reference range.

    1. No reference range for the test -> normal
    2. Known-normal text ("negative", "no growth", "Compatible") -> normal
    3. Not numeric -> normal
    4. Below min -> low, above max -> high, otherwise normal
    """
    ref_range = (catalog or get_catalog()).range(section, test_name)
    if ref_range is None:
        return Flag.NORMAL

    if is_known_normal_text(value):
        return Flag.NORMAL

    number = parse_numeric(value)
    if number is None:
        return Flag.NORMAL

    if ref_range.min is not None and number < ref_range.min:
        return Flag.LOW
    if ref_range.max is not None and number > ref_range.max:
        return Flag.HIGH
    return Flag.NORMAL


def flag_results(
    results: Iterable[TestResult],
    catalog: Optional[ReferenceCatalog] = None,
) -> list[tuple[TestResult, Flag]]:
    """Classify a batch of results, preserving order."""
    catalog = catalog or get_catalog()
    return [
        (result, classify(result.result_value, result.test_name, result.section, catalog))
        for result in results
    ]
