"""
Read-side views: the per-patient laboratory report, dashboard counts and
the audit summary.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel

from cognilab.engines.audit import AuditTrail
from cognilab.engines.billing import BillingLedger
from cognilab.engines.classifier import Flag, flag_results
from cognilab.engines.pipeline import ResultPipeline
from cognilab.engines.registration import PatientRegistry
from cognilab.models import (
    RESULT_STAGES,
    Actor,
    AuditAction,
    BillingStatus,
    BillingSummary,
    Patient,
)

logger = logging.getLogger(__name__)

PATHOLOGIST = "Elizabeth Chua, MD, FPSP"


class ReportLine(BaseModel):
    result_id: str
    section: str
    test_name: str
    result_value: str
    reference_range: str
    unit: str
    status: str
    flag: Flag
    billing_status: BillingStatus


class PatientReport(BaseModel):
    patient: Patient
    lines: list[ReportLine]
    billing_status: BillingStatus
    pathologist: str = PATHOLOGIST
    date_released: date

    @property
    def abnormal_count(self) -> int:
        return sum(1 for line in self.lines if line.flag != Flag.NORMAL)


class Dashboard(BaseModel):
    patient_count: int
    result_count: int
    results_by_status: dict[str, int]
    billing: BillingSummary


class AuditSummary(BaseModel):
    action_counts: dict[str, int]
    active_sessions: int
    total_entries: int


class Reports:
    """Assembles reports from the registry, pipeline, ledger and audit trail."""

    def __init__(
        self,
        registry: PatientRegistry,
        pipeline: ResultPipeline,
        ledger: BillingLedger,
        audit: AuditTrail,
    ):
        self.registry = registry
        self.pipeline = pipeline
        self.ledger = ledger
        self.audit = audit

    def patient_report(
        self,
        patient_id: str,
        actor: Optional[Actor] = None,
        download: bool = False,
    ) -> Optional[PatientReport]:
        """
        Laboratory report for one patient.

        Each result carries its abnormal flag and the payment status of the
        billing line that covers it. The report is paid only when the
        patient has at least one result and every result's line is paid.
        A downloaded report is recorded in the audit log.
        """
        patient = self.registry.get(patient_id)
        if patient is None:
            return None

        results = self.pipeline.for_patient(patient.id, patient.full_name)
        lines = []
        for result, flag in flag_results(results, self.pipeline.catalog):
            entry = self.ledger.find_for_result(result)
            paid = entry is not None and entry.is_paid
            lines.append(ReportLine(
                result_id=result.id,
                section=result.section,
                test_name=result.test_name,
                result_value=result.result_value,
                reference_range=result.reference_range,
                unit=result.unit,
                status=result.status,
                flag=flag,
                billing_status=BillingStatus.PAID if paid else BillingStatus.UNPAID,
            ))

        all_paid = bool(lines) and all(line.billing_status == BillingStatus.PAID for line in lines)
        report = PatientReport(
            patient=patient,
            lines=lines,
            billing_status=BillingStatus.PAID if all_paid else BillingStatus.UNPAID,
            date_released=date.today(),
        )

        if download:
            self.audit.append(
                AuditAction.DOWNLOAD,
                resource=patient.full_name,
                resource_type="report",
                description=f"Downloaded laboratory report for {patient.full_name} ({len(lines)} tests)",
                actor=actor,
            )
        return report

    def dashboard(self) -> Dashboard:
        results = self.pipeline.list()
        by_status = {stage.value: 0 for stage in RESULT_STAGES}
        for result in results:
            by_status[result.status] = by_status.get(result.status, 0) + 1
        return Dashboard(
            patient_count=len(self.registry.list()),
            result_count=len(results),
            results_by_status=by_status,
            billing=self.ledger.aggregate(),
        )

    def audit_summary(self) -> AuditSummary:
        counts = self.audit.action_counts()
        return AuditSummary(
            action_counts=counts,
            active_sessions=self.audit.active_sessions(),
            total_entries=sum(counts.values()),
        )
