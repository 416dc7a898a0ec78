"""
Data models for CogniLab.
"""

from cognilab.models.audit import Actor, AuditAction, AuditLogEntry, SYSTEM_ACTOR
from cognilab.models.lab import (
  RESULT_STAGES,
  BillingEntry,
  BillingStatus,
  BillingSummary,
  ResultStatus,
  TestResult,
  utcnow,
)
from cognilab.models.patient import Patient, demographics_complete
from cognilab.models.user import (
  MAX_FACULTY_USERS,
  MAX_MEMBER_USERS,
  User,
  UserRole,
  UserStatus,
)

__all__ = [
  "Actor",
  "AuditAction",
  "AuditLogEntry",
  "SYSTEM_ACTOR",
  "RESULT_STAGES",
  "BillingEntry",
  "BillingStatus",
  "BillingSummary",
  "ResultStatus",
  "TestResult",
  "utcnow",
  "Patient",
  "demographics_complete",
  "MAX_FACULTY_USERS",
  "MAX_MEMBER_USERS",
  "User",
  "UserRole",
  "UserStatus",
]
