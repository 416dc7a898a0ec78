"""
Lab workflow engines.
"""

from .audit import AuditTrail
from .billing import BillingLedger, format_amount
from .classifier import Flag, classify, flag_results, parse_numeric
from .engine import LabEngine, get_engine, reset_engine, set_engine
from .errors import BusinessRuleError, InvalidTransitionError, LabError, ValidationError
from .pipeline import ResultPipeline, next_status
from .registration import PatientRegistry, normalize_mobile, validate_patient
from .reports import AuditSummary, Dashboard, PatientReport, ReportLine, Reports
from .users import UserDirectory, generate_encryption_key

__all__ = [
    "AuditTrail",
    "BillingLedger",
    "format_amount",
    "Flag",
    "classify",
    "flag_results",
    "parse_numeric",
    "LabEngine",
    "get_engine",
    "reset_engine",
    "set_engine",
    "BusinessRuleError",
    "InvalidTransitionError",
    "LabError",
    "ValidationError",
    "ResultPipeline",
    "next_status",
    "PatientRegistry",
    "normalize_mobile",
    "validate_patient",
    "AuditSummary",
    "Dashboard",
    "PatientReport",
    "ReportLine",
    "Reports",
    "UserDirectory",
    "generate_encryption_key",
]
