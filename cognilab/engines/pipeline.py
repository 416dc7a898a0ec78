"""
Result pipeline.

A test result moves forward one stage at a time through

    pending -> encoding -> for_verification -> approved -> released

with no skipping and no going back; released is terminal. Creating a result
bills it through the ledger (unless it is a component of a consolidated
parent test) and every change is audited.

Transitions are applied one at a time per result. No lock protects two
callers advancing the same result concurrently: the store applies
last-write-wins, so two racing advances can both read the same stage and
write the same next stage.
"""

from __future__ import annotations

import logging
from typing import Optional

from knowledge.lab import ReferenceCatalog, get_catalog

from cognilab.db.repositories import TestResultRepository
from cognilab.db.store import Store
from cognilab.engines.audit import AuditTrail
from cognilab.engines.billing import BillingLedger, format_amount
from cognilab.engines.errors import InvalidTransitionError, ValidationError
from cognilab.models import Actor, AuditAction, ResultStatus, TestResult

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "patient_name",
    "section",
    "test_name",
    "result_value",
    "reference_range",
    "unit",
    "status",
)


def next_status(current: str) -> ResultStatus:
    """
    The stage after current.

    Raises InvalidTransitionError for released results and for statuses
    that are not pipeline stages.
    """
    stage = ResultStatus.parse(current)
    if stage is None:
        raise InvalidTransitionError(f"Unknown result status: {current!r}")
    following = stage.next()
    if following is None:
        raise InvalidTransitionError("Result is already released")
    return following


class ResultPipeline:
    """Create, advance, edit and delete test results."""

    def __init__(
        self,
        repository: Optional[TestResultRepository] = None,
        ledger: Optional[BillingLedger] = None,
        audit: Optional[AuditTrail] = None,
        catalog: Optional[ReferenceCatalog] = None,
        store: Optional[Store] = None,
    ):
        self._repo = repository or TestResultRepository(store)
        self.catalog = catalog or get_catalog()
        self.audit = audit or AuditTrail(store=self._repo.store)
        self.ledger = ledger or BillingLedger(store=self._repo.store, audit=self.audit, catalog=self.catalog)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create(
        self,
        patient_name: str,
        section: str,
        test_name: str,
        value: object,
        reference_range: Optional[str] = None,
        unit: Optional[str] = None,
        actor: Optional[Actor] = None,
        patient_id: Optional[str] = None,
        billing_id: Optional[str] = None,
    ) -> Optional[TestResult]:
        """
        Enter a new result in the pending stage.

        Standalone tests get their own unpaid billing line priced from the
        catalog (default price when unpriced). Component tests are not billed:
        they are linked to the parent test's line (billing_id, or the
        patient's existing line for the parent test) and the caller owns
        creating that single consolidated line.

        Returns None if the result could not be stored.
        """
        value_text = "" if value is None else str(value).strip()
        errors = {}
        if not (patient_name or "").strip():
            errors["patient_name"] = "Patient name is required"
        if not (section or "").strip():
            errors["section"] = "Lab section is required"
        if not (test_name or "").strip():
            errors["test_name"] = "Test is required"
        if not value_text:
            errors["result_value"] = "Result value is required"
        if errors:
            raise ValidationError(errors)

        ref_range = self.catalog.range(section, test_name)
        if reference_range is None:
            reference_range = ref_range.display() if ref_range else ""
        if unit is None:
            unit = ref_range.unit if ref_range else ""

        parent = self.catalog.parent_of(section, test_name)
        resource = f"{patient_name} - {test_name}"

        billing = None
        if parent is None:
            amount = self.catalog.price_or_default(section, test_name)
            billing = self.ledger.create(
                patient_name=patient_name,
                test_name=test_name,
                section=section,
                amount=amount,
                description=f"{section} - {test_name}",
                patient_id=patient_id,
            )
            billing_id = billing.id if billing else None
        elif billing_id is None:
            parent_line = self.ledger.find_for_result(TestResult(
                id="",
                patient_name=patient_name,
                section=section,
                test_name=test_name,
            ))
            billing_id = parent_line.id if parent_line else None

        row = {
            "patient_name": patient_name,
            "patient_id": patient_id,
            "section": section,
            "test_name": test_name,
            "result_value": value_text,
            "reference_range": reference_range,
            "unit": unit,
            "status": ResultStatus.PENDING.value,
            "billing_id": billing_id,
        }
        result = self._repo.create({k: v for k, v in row.items() if v is not None})
        if result is None:
            if billing is not None:
                # Do not leave a charge behind for a result that was never stored
                self.ledger.withdraw(billing.id)
            return None

        if parent is not None:
            description = (
                f"Added {test_name} result for {patient_name} ({section}); "
                f"component of {parent}, billed once under {parent}"
            )
        elif billing is not None:
            description = (
                f"Added {test_name} result for {patient_name} ({section}); "
                f"auto-billed {format_amount(billing.amount)}"
            )
        else:
            description = (
                f"Added {test_name} result for {patient_name} ({section}); "
                f"auto-billing failed"
            )
        self.audit.append(
            AuditAction.EDIT,
            resource=resource,
            resource_type="test_result",
            description=description,
            actor=actor,
        )
        return result

    def create_panel(
        self,
        patient_name: str,
        section: str,
        parent_test: str,
        components: list[dict],
        actor: Optional[Actor] = None,
        patient_id: Optional[str] = None,
    ) -> list[TestResult]:
        """
        Enter a consolidated test (e.g. a CBC) as its component results.

        Bills the parent test once and links every component result to that
        line. Each component dict needs test_name and value, and may carry
        reference_range and unit.
        """
        registered = set(self.catalog.components_of(section, parent_test))
        if not registered:
            raise ValidationError({"test_name": f"{parent_test} has no component tests in {section}"})
        unknown = [c.get("test_name") for c in components if c.get("test_name") not in registered]
        if unknown:
            raise ValidationError({
                "components": f"Not components of {parent_test}: {', '.join(map(str, unknown))}",
            })
        missing = [
            c["test_name"] for c in components
            if c.get("value") is None or not str(c["value"]).strip()
        ]
        if missing:
            raise ValidationError({"components": f"Values required for: {', '.join(missing)}"})

        amount = self.catalog.price_or_default(section, parent_test)
        line = self.ledger.create(
            patient_name=patient_name,
            test_name=parent_test,
            section=section,
            amount=amount,
            description=f"{section} - {parent_test}",
            patient_id=patient_id,
        )
        results = []
        for component in components:
            result = self.create(
                patient_name=patient_name,
                section=section,
                test_name=component["test_name"],
                value=component["value"],
                reference_range=component.get("reference_range"),
                unit=component.get("unit"),
                actor=actor,
                patient_id=patient_id,
                billing_id=line.id if line else None,
            )
            if result is not None:
                results.append(result)

        if line is None:
            return results
        if not results:
            # No component was stored, so the panel charge covers nothing
            self.ledger.withdraw(line.id)
            return results
        self.audit.append(
            AuditAction.EDIT,
            resource=f"{patient_name} - {parent_test}",
            resource_type="billing",
            description=(
                f"Billed {parent_test} for {patient_name}: {format_amount(line.amount)} "
                f"covering {len(results)} component results"
            ),
            actor=actor,
        )
        return results

    # -------------------------------------------------------------------------
    # Status changes and edits
    # -------------------------------------------------------------------------

    def advance(self, result_id: str, actor: Optional[Actor] = None) -> Optional[TestResult]:
        """
        Move a result to the next stage.

        Returns None if the result does not exist. Raises
        InvalidTransitionError if it is released or its status is unknown.
        """
        result = self._repo.get_by_id(result_id)
        if result is None:
            return None
        return self._apply(result, {"status": next_status(result.status).value}, actor)

    def update(self, result_id: str, actor: Optional[Actor] = None, **fields) -> Optional[TestResult]:
        """
        Edit result fields.

        A status change here follows the same rule as advance(): only the
        next stage is accepted.
        """
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError({name: "Field cannot be edited" for name in unknown})

        result = self._repo.get_by_id(result_id)
        if result is None:
            return None

        if "status" in fields:
            new = fields["status"]
            new = new.value if isinstance(new, ResultStatus) else str(new)
            if new == result.status:
                fields.pop("status")
            elif new != next_status(result.status).value:
                raise InvalidTransitionError(
                    f"Cannot move result from {result.status} to {new}"
                )
            else:
                fields["status"] = new
        return self._apply(result, fields, actor)

    def _apply(self, result: TestResult, fields: dict, actor: Optional[Actor]) -> Optional[TestResult]:
        changed = {
            name: value for name, value in fields.items()
            if getattr(result, name) != value
        }
        if not changed:
            return result

        updated = self._repo.update(result.id, **changed)
        if updated is None:
            return None

        parts = []
        if "status" in changed:
            parts.append(f"status: {result.status} → {changed['status']}")
        others = [name for name in changed if name != "status"]
        if others:
            parts.append(f"updated {', '.join(others)}")
        self.audit.append(
            AuditAction.EDIT,
            resource=f"{updated.patient_name} - {updated.test_name}",
            resource_type="test_result",
            description="; ".join(parts),
            actor=actor,
        )
        return updated

    def delete(self, result_id: str, actor: Optional[Actor] = None) -> bool:
        """Delete a result. Its billing line is left as is."""
        result = self._repo.get_by_id(result_id)
        if result is None:
            return False
        if not self._repo.delete(result_id):
            return False
        self.audit.append(
            AuditAction.DELETE,
            resource=f"{result.patient_name} - {result.test_name}",
            resource_type="test_result",
            description=f"Deleted {result.test_name} result ({result.status}) for {result.patient_name}",
            actor=actor,
        )
        return True

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def get(self, result_id: str) -> Optional[TestResult]:
        return self._repo.get_by_id(result_id)

    def list(
        self,
        status: Optional[ResultStatus | str] = None,
        patient_name: Optional[str] = None,
    ) -> list[TestResult]:
        filters = {}
        if status:
            filters["status"] = ResultStatus(status).value
        if patient_name:
            filters["patient_name"] = patient_name
        return self._repo.list(**filters)

    def for_patient(self, patient_id: str, patient_name: str) -> list[TestResult]:
        """Results linked to a patient by id, plus legacy results matched by name."""
        results = {r.id: r for r in self._repo.get_by_patient(patient_id)}
        for result in self._repo.get_by_patient_name(patient_name):
            if result.patient_id in (None, patient_id):
                results.setdefault(result.id, result)
        return sorted(results.values(), key=lambda r: r.date_created)
