"""
Patient registration model.

patient_id_no is the clinic's own business key and is unique across
patients. Identity fields are fixed at registration; demographic and
history fields may be edited later.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from cognilab.models.lab import utcnow


# Fields that can no longer be changed once a patient is registered
IDENTITY_FIELDS = ("patient_id_no",)

REQUIRED_DEMOGRAPHICS = (
  "last_name",
  "first_name",
  "age",
  "birthdate",
  "sex",
  "contact_no",
  "municipality",
  "province",
  "medical_history",
  "medications",
  "allergy",
)


class Patient(BaseModel):
  """A registered laboratory patient."""

  id: str
  patient_id_no: str
  last_name: str
  first_name: str
  middle_name: Optional[str] = None
  age: int
  birthdate: date
  sex: str = "Male"
  contact_no: str = ""
  address_house_no: Optional[str] = None
  address_street: Optional[str] = None
  address_barangay: Optional[str] = None
  municipality: str = ""
  province: str = ""
  medical_history: str = ""
  medications: str = ""
  allergy: str = ""
  demographics_complete: bool = False
  date_registered: datetime = Field(default_factory=utcnow)

  @computed_field
  @property
  def full_name(self) -> str:
    """Display name used on results and billing lines."""
    return f"{self.first_name} {self.last_name}"

  @computed_field
  @property
  def address(self) -> str:
    street = self.address_street or self.address_barangay or ""
    parts = [f"{self.address_house_no or ''} {street}".strip(), self.municipality, self.province]
    return ", ".join(part for part in parts if part)

  @classmethod
  def from_db(cls, data: dict) -> "Patient":
    """Create Patient from database row."""
    fields = {key: value for key, value in data.items() if key in cls.model_fields}
    fields["id"] = str(data["id"])
    if fields.get("date_registered") is None:
      fields.pop("date_registered", None)
    return cls(**fields)


def demographics_complete(data: dict) -> bool:
  """True when every required demographic field has a value."""
  for field in REQUIRED_DEMOGRAPHICS:
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
      return False
  return True
