"""
Laboratory workflow models: test results and billing entries.

A TestResult moves through a fixed, forward-only stage list. A BillingEntry
is the charge for one (patient, test) pair; its amount is fixed when it is
created and only its payment status and receipt details ever change.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


# =============================================================================
# TEST RESULTS
# =============================================================================


class ResultStatus(str, Enum):
  """Result pipeline stages, in order."""

  PENDING = "pending"
  ENCODING = "encoding"
  FOR_VERIFICATION = "for_verification"
  APPROVED = "approved"
  RELEASED = "released"

  @property
  def label(self) -> str:
    return self.value.replace("_", " ").upper()

  @property
  def is_terminal(self) -> bool:
    return self is ResultStatus.RELEASED

  @classmethod
  def parse(cls, value: object) -> Optional["ResultStatus"]:
    """Map a stored status to a stage, None if it is not a known stage."""
    if isinstance(value, cls):
      return value
    try:
      return cls(value)
    except ValueError:
      return None

  def next(self) -> Optional["ResultStatus"]:
    """The following stage, None once released."""
    index = RESULT_STAGES.index(self)
    if index + 1 >= len(RESULT_STAGES):
      return None
    return RESULT_STAGES[index + 1]


RESULT_STAGES: tuple[ResultStatus, ...] = (
  ResultStatus.PENDING,
  ResultStatus.ENCODING,
  ResultStatus.FOR_VERIFICATION,
  ResultStatus.APPROVED,
  ResultStatus.RELEASED,
)


class TestResult(BaseModel):
  """
  One ordered test performed for a patient.

  patient_name is the denormalised display name kept for legacy rows;
  patient_id and billing_id are the explicit links used whenever present.
  status is kept as the raw stored string so an unknown value can be
  detected and refused instead of failing at load time.
  """

  __test__ = False  # not a pytest test class

  id: str
  patient_name: str
  patient_id: Optional[str] = None
  section: str
  test_name: str
  result_value: str = ""
  reference_range: str = ""
  unit: str = ""
  status: str = ResultStatus.PENDING.value
  billing_id: Optional[str] = None
  date_created: datetime = Field(default_factory=utcnow)

  @property
  def stage(self) -> Optional[ResultStatus]:
    return ResultStatus.parse(self.status)

  @property
  def is_released(self) -> bool:
    return self.status == ResultStatus.RELEASED.value

  @classmethod
  def from_db(cls, data: dict) -> "TestResult":
    """Create TestResult from a database row."""
    return cls(
      id=str(data["id"]),
      patient_name=data.get("patient_name") or "",
      patient_id=str(data["patient_id"]) if data.get("patient_id") else None,
      section=data.get("section") or "",
      test_name=data.get("test_name") or "",
      result_value="" if data.get("result_value") is None else str(data["result_value"]),
      reference_range=data.get("reference_range") or "",
      unit=data.get("unit") or "",
      status=data.get("status") or ResultStatus.PENDING.value,
      billing_id=str(data["billing_id"]) if data.get("billing_id") else None,
      date_created=data.get("date_created") or utcnow(),
    )


# =============================================================================
# BILLING
# =============================================================================


class BillingStatus(str, Enum):
  PAID = "paid"
  UNPAID = "unpaid"


class BillingEntry(BaseModel):
  """A charge for one (patient, test) pair."""

  id: str
  patient_name: str
  patient_id: Optional[str] = None
  test_name: str
  section: str = ""
  amount: float
  status: BillingStatus = BillingStatus.UNPAID
  description: str = ""
  or_number: Optional[str] = None
  date_paid: Optional[date] = None
  created_at: datetime = Field(default_factory=utcnow)

  @property
  def is_paid(self) -> bool:
    return self.status == BillingStatus.PAID

  @classmethod
  def from_db(cls, data: dict) -> "BillingEntry":
    """Create BillingEntry from a database row."""
    date_paid = data.get("date_paid")
    if isinstance(date_paid, str) and "T" in date_paid:
      date_paid = date_paid.split("T")[0]
    return cls(
      id=str(data["id"]),
      patient_name=data.get("patient_name") or "",
      patient_id=str(data["patient_id"]) if data.get("patient_id") else None,
      test_name=data.get("test_name") or "",
      section=data.get("section") or "",
      amount=float(data.get("amount") or 0),
      status=data.get("status") or BillingStatus.UNPAID,
      description=data.get("description") or "",
      or_number=data.get("or_number"),
      date_paid=date_paid or None,
      created_at=data.get("created_at") or utcnow(),
    )


class BillingSummary(BaseModel):
  """Paid/unpaid totals, recomputed from the current ledger on every read."""

  paid_count: int = 0
  unpaid_count: int = 0
  total_paid_amount: float = 0.0
  total_unpaid_amount: float = 0.0

  @property
  def total_count(self) -> int:
    return self.paid_count + self.unpaid_count

  @property
  def total_amount(self) -> float:
    return self.total_paid_amount + self.total_unpaid_amount
