"""
Billing ledger.

One BillingEntry per charged (patient, test) pair. Lines are created unpaid
with an amount taken from the reference catalog, and afterwards only their
payment status, OR number and paid date change. Totals are recomputed from
the current ledger on every query.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from knowledge.lab import ReferenceCatalog, get_catalog

from cognilab.db.repositories import BillingRepository
from cognilab.db.store import Store
from cognilab.engines.audit import AuditTrail
from cognilab.models import (
    Actor,
    AuditAction,
    BillingEntry,
    BillingStatus,
    BillingSummary,
    TestResult,
)

logger = logging.getLogger(__name__)


def format_amount(amount: float) -> str:
    return f"₱{amount:,.2f}"


class BillingLedger:
    """Create, settle and total billing lines."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        audit: Optional[AuditTrail] = None,
        catalog: Optional[ReferenceCatalog] = None,
        store: Optional[Store] = None,
    ):
        self._repo = repository or BillingRepository(store)
        self.audit = audit or AuditTrail(store=self._repo.store)
        self.catalog = catalog or get_catalog()

    def create(
        self,
        patient_name: str,
        test_name: str,
        section: str,
        amount: float,
        description: str = "",
        patient_id: Optional[str] = None,
    ) -> Optional[BillingEntry]:
        """
        Open an unpaid billing line.

        Not audited here: the operation that caused the charge (result entry,
        patient registration) records it in its own audit entry.
        """
        row = {
            "patient_name": patient_name,
            "patient_id": patient_id,
            "test_name": test_name,
            "section": section,
            "amount": float(amount),
            "status": BillingStatus.UNPAID.value,
            "description": description or f"{section} - {test_name}",
        }
        entry = self._repo.create({k: v for k, v in row.items() if v is not None})
        if entry is None:
            logger.warning("Billing line not created for %s / %s", patient_name, test_name)
        return entry

    def set_status(
        self,
        billing_id: str,
        status: BillingStatus | str,
        or_number: Optional[str] = None,
        date_paid: Optional[date | str] = None,
        actor: Optional[Actor] = None,
    ) -> Optional[BillingEntry]:
        """
        Mark a line paid or unpaid.

        Paying records the caller's OR number and paid date; reverting to
        unpaid clears both. Setting the status a line already has changes
        nothing and is not audited. Returns None if the line does not exist.
        """
        entry = self._repo.get_by_id(billing_id)
        if entry is None:
            return None

        new_status = BillingStatus(status)
        if new_status == entry.status:
            return entry

        if new_status == BillingStatus.PAID:
            if isinstance(date_paid, date):
                date_paid = date_paid.isoformat()
            fields = {"status": new_status.value, "or_number": or_number, "date_paid": date_paid}
        else:
            fields = {"status": new_status.value, "or_number": None, "date_paid": None}

        updated = self._repo.update(billing_id, **fields)
        if updated is None:
            return None

        description = (
            f"Billing status: {entry.status.value} → {new_status.value} "
            f"for {entry.test_name} ({format_amount(entry.amount)})"
        )
        if new_status == BillingStatus.PAID and or_number:
            description += f", OR #{or_number}"
        self.audit.append(
            AuditAction.EDIT,
            resource=f"{entry.patient_name} - {entry.test_name}",
            resource_type="billing",
            description=description,
            actor=actor,
        )
        return updated

    def delete(self, billing_id: str, actor: Optional[Actor] = None) -> bool:
        entry = self._repo.get_by_id(billing_id)
        if entry is None:
            return False
        if not self._repo.delete(billing_id):
            return False
        self.audit.append(
            AuditAction.DELETE,
            resource=f"{entry.patient_name} - {entry.test_name}",
            resource_type="billing",
            description=(
                f"Billing entry deleted: {entry.status.value} → deleted "
                f"for {entry.test_name} ({format_amount(entry.amount)})"
            ),
            actor=actor,
        )
        return True

    def withdraw(self, billing_id: str) -> bool:
        """
        Remove a line without an audit entry of its own.

        For callers that undo a charge they just opened, or that record the
        removal in their own audit entry (patient deletion).
        """
        return self._repo.delete(billing_id)

    def get(self, billing_id: str) -> Optional[BillingEntry]:
        return self._repo.get_by_id(billing_id)

    def list(
        self,
        status: Optional[BillingStatus | str] = None,
        patient_name: Optional[str] = None,
    ) -> list[BillingEntry]:
        filters = {}
        if status:
            filters["status"] = BillingStatus(status).value
        if patient_name:
            filters["patient_name"] = patient_name
        return self._repo.list(**filters)

    def for_patient(self, patient_id: str, patient_name: str) -> list[BillingEntry]:
        """Lines linked to a patient by id, plus legacy lines matched by name."""
        entries = {e.id: e for e in self._repo.get_by_patient(patient_id)}
        for entry in self._repo.get_by_patient_name(patient_name):
            if entry.patient_id in (None, patient_id):
                entries.setdefault(entry.id, entry)
        return list(entries.values())

    def aggregate(self) -> BillingSummary:
        """Paid/unpaid counts and totals over the current ledger."""
        summary = BillingSummary()
        for entry in self._repo.list():
            if entry.status == BillingStatus.PAID:
                summary.paid_count += 1
                summary.total_paid_amount += entry.amount
            else:
                summary.unpaid_count += 1
                summary.total_unpaid_amount += entry.amount
        return summary

    def find_for_result(self, result: TestResult) -> Optional[BillingEntry]:
        """
        The billing line that covers a result.

        Uses the result's billing_id when it has one. Otherwise falls back to
        exact (test name, patient name) matching, with component tests matched
        on their parent test's name.
        """
        if result.billing_id:
            entry = self._repo.get_by_id(result.billing_id)
            if entry is not None:
                return entry
        test_name = self.catalog.billing_test_name(result.section, result.test_name)
        return self._repo.find(test_name, result.patient_name)
