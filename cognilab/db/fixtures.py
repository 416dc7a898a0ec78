"""
Deterministic fixture data for the in-memory store.

Enabled with COGNILAB_USE_MOCK_DATA=true, or automatically when Supabase is
not configured. Only the demo accounts are seeded; every other table starts
empty.
"""

import copy

MOCK_USERS = [
  # Faculty - system administrator
  {
    "id": "user-009",
    "full_name": "BSMT Faculty Member",
    "email": "bsmtCogniLab2026@gmail.com",
    "role": "faculty",
    "department": "Laboratory Management",
    "status": "active",
    "encryption_key": "ENC_KEY_ADMIN",
    "join_date": "2024-01-01",
    "created_at": "2024-01-01T10:00:00+00:00",
    "updated_at": "2024-01-01T10:00:00+00:00",
  },
  {
    "id": "user-001",
    "full_name": "MedTech User",
    "email": "medtech@clinic.com",
    "role": "member",
    "department": "Clinical Chemistry",
    "status": "active",
    "encryption_key": "ENC_KEY_001",
    "join_date": "2024-01-01",
    "created_at": "2024-01-01T10:05:00+00:00",
    "updated_at": "2024-01-01T10:05:00+00:00",
  },
]

# Mock-mode sign-in passwords, keyed by email
MOCK_CREDENTIALS = {
  "bsmtCogniLab2026@gmail.com": "BSMT2026LIS",
  "medtech@clinic.com": "password",
}


def fixture_tables() -> dict[str, list[dict]]:
  """Fresh copies of every fixture table."""
  return {
    "users": copy.deepcopy(MOCK_USERS),
    "patients": [],
    "test_results": [],
    "billing": [],
    "audit_logs": [],
  }
