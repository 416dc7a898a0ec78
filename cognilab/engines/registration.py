"""
Patient registry.

Registering a patient validates the intake form, rejects a duplicate
patient ID, stores the patient and bills the flat consultation fee.
Deleting a patient also deletes the results and billing lines linked to it.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Optional

from knowledge.lab import ReferenceCatalog, get_catalog

from cognilab.db.repositories import PatientRepository, TestResultRepository
from cognilab.db.store import Store
from cognilab.engines.audit import AuditTrail
from cognilab.engines.billing import BillingLedger, format_amount
from cognilab.engines.errors import BusinessRuleError, ValidationError
from cognilab.models import Actor, AuditAction, Patient, demographics_complete
from cognilab.models.patient import IDENTITY_FIELDS

logger = logging.getLogger(__name__)

REQUIRED_TEXT = {
    "patient_id_no": "Patient ID is required",
    "last_name": "Last name is required",
    "first_name": "First name is required",
    "municipality": "Municipality is required",
    "province": "Province is required",
    "medical_history": "Medical history is required",
    "medications": "Medications is required",
    "allergy": "Allergy information is required",
}

OPTIONAL_TEXT = ("middle_name", "address_house_no", "address_street", "address_barangay")

# 09XXXXXXXXX, +639XXXXXXXXX or 639XXXXXXXXX
_MOBILE_LOCAL = re.compile(r"^09\d{9}$")
_MOBILE_INTL = re.compile(r"^\+639\d{9}$")
_MOBILE_BARE = re.compile(r"^639\d{9}$")


def normalize_mobile(number: str) -> Optional[str]:
    """
    Normalise a Philippine mobile number to +639XXXXXXXXX.

    Spaces and dashes are ignored. Returns None for landlines, wrong
    lengths or prefixes, and anything with letters.
    """
    contact = re.sub(r"[\s-]", "", number or "")
    if _MOBILE_LOCAL.match(contact):
        return "+63" + contact[1:]
    if _MOBILE_INTL.match(contact):
        return contact
    if _MOBILE_BARE.match(contact):
        return "+" + contact
    return None


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def validate_patient(data: dict) -> dict:
    """
    Validate an intake form.

    Returns the cleaned row ready for storage. Raises ValidationError with
    every failing field.
    """
    errors = {}
    row = {}

    for field, message in REQUIRED_TEXT.items():
        value = _text(data.get(field))
        if not value:
            errors[field] = message
        row[field] = value

    for field in OPTIONAL_TEXT:
        value = _text(data.get(field))
        row[field] = value or None

    try:
        age = int(data.get("age"))
    except (TypeError, ValueError):
        age = 0
    if age < 1:
        errors["age"] = "Valid age is required"
    row["age"] = age

    birthdate = data.get("birthdate")
    if isinstance(birthdate, str) and birthdate.strip():
        try:
            birthdate = date.fromisoformat(birthdate.strip())
        except ValueError:
            errors["birthdate"] = "Birthdate must be YYYY-MM-DD"
            birthdate = None
    if not isinstance(birthdate, date):
        errors.setdefault("birthdate", "Birthdate is required")
    else:
        row["birthdate"] = birthdate.isoformat()

    contact = _text(data.get("contact_no"))
    if not contact:
        errors["contact_no"] = "Contact number is required"
    else:
        normalized = normalize_mobile(contact)
        if normalized is None:
            errors["contact_no"] = "Invalid Philippine mobile number."
        row["contact_no"] = normalized or contact

    row["sex"] = _text(data.get("sex")) or "Male"

    if errors:
        raise ValidationError(errors)
    row["demographics_complete"] = demographics_complete(row)
    return row


class PatientRegistry:
    """Register, edit and remove patients."""

    def __init__(
        self,
        repository: Optional[PatientRepository] = None,
        ledger: Optional[BillingLedger] = None,
        results: Optional[TestResultRepository] = None,
        audit: Optional[AuditTrail] = None,
        catalog: Optional[ReferenceCatalog] = None,
        store: Optional[Store] = None,
    ):
        self._repo = repository or PatientRepository(store)
        store = self._repo.store
        self.catalog = catalog or get_catalog()
        self.audit = audit or AuditTrail(store=store)
        self.ledger = ledger or BillingLedger(store=store, audit=self.audit, catalog=self.catalog)
        self._results = results or TestResultRepository(store)

    def register(self, data: dict, actor: Optional[Actor] = None) -> Optional[Patient]:
        """
        Register a patient and bill the consultation fee.

        Raises ValidationError for an incomplete form and BusinessRuleError
        when the patient ID is already taken. Returns None if the patient
        could not be stored.
        """
        row = validate_patient(data)
        if self._repo.get_by_patient_id_no(row["patient_id_no"]) is not None:
            raise BusinessRuleError(
                "Patient ID already exists",
                details={"patient_id_no": "Patient ID already exists"},
            )

        patient = self._repo.create(row)
        if patient is None:
            return None

        fee = self.catalog.consultation_fee
        line = self.ledger.create(
            patient_name=patient.full_name,
            test_name=self.catalog.consultation_test_name,
            section=self.catalog.consultation_section,
            amount=fee,
            description="Patient registration and consultation fee",
            patient_id=patient.id,
        )
        billed = (
            f"consultation fee {format_amount(fee)} billed" if line is not None
            else "consultation fee not billed"
        )
        self.audit.append(
            AuditAction.EDIT,
            resource=patient.full_name,
            resource_type="patient",
            description=f"Registered patient {patient.full_name} (ID {patient.patient_id_no}); {billed}",
            actor=actor,
        )
        return patient

    def update(self, patient_id: str, data: dict, actor: Optional[Actor] = None) -> Optional[Patient]:
        """
        Edit a patient. The patient ID number cannot change.
        """
        patient = self._repo.get_by_id(patient_id)
        if patient is None:
            return None

        for field in IDENTITY_FIELDS:
            if field in data and _text(data[field]) != getattr(patient, field):
                raise BusinessRuleError(f"{field} cannot be changed after registration")

        current = patient.model_dump(mode="json")
        row = validate_patient({**current, **data})
        changed = {
            field: value for field, value in row.items()
            if field not in IDENTITY_FIELDS and current.get(field) != value
        }
        if not changed:
            return patient

        updated = self._repo.update(patient_id, **changed)
        if updated is None:
            return None
        self.audit.append(
            AuditAction.EDIT,
            resource=updated.full_name,
            resource_type="patient",
            description=f"Updated patient {updated.full_name}: {', '.join(sorted(changed))}",
            actor=actor,
        )
        return updated

    def delete(self, patient_id: str, actor: Optional[Actor] = None) -> bool:
        """
        Delete a patient with their results and billing lines.

        Rows linked by patient_id are removed, and so are legacy rows with no
        patient_id that carry the patient's exact full name.
        """
        patient = self._repo.get_by_id(patient_id)
        if patient is None:
            return False

        results = self._linked(self._results, patient)
        lines = self.ledger.for_patient(patient.id, patient.full_name)
        removed_results = sum(1 for r in results if self._results.delete(r.id))
        removed_lines = sum(1 for line in lines if self.ledger.withdraw(line.id))

        if not self._repo.delete(patient_id):
            logger.error("Patient %s not deleted after removing linked rows", patient_id)
            return False
        self.audit.append(
            AuditAction.DELETE,
            resource=patient.full_name,
            resource_type="patient",
            description=(
                f"Deleted patient {patient.full_name} (ID {patient.patient_id_no}) "
                f"with {removed_results} test results and {removed_lines} billing entries"
            ),
            actor=actor,
        )
        return True

    @staticmethod
    def _linked(repository, patient: Patient) -> list:
        rows = {row.id: row for row in repository.get_by_patient(patient.id)}
        for row in repository.get_by_patient_name(patient.full_name):
            if row.patient_id is None:
                rows.setdefault(row.id, row)
        return list(rows.values())

    def get(self, patient_id: str) -> Optional[Patient]:
        return self._repo.get_by_id(patient_id)

    def get_by_patient_id_no(self, patient_id_no: str) -> Optional[Patient]:
        return self._repo.get_by_patient_id_no(patient_id_no)

    def list(self, search: Optional[str] = None) -> list[Patient]:
        """Patients, newest first, optionally filtered by name or patient ID."""
        patients = self._repo.list()
        if search:
            needle = search.strip().lower()
            patients = [
                p for p in patients
                if needle in p.full_name.lower() or needle in p.patient_id_no.lower()
            ]
        return patients
