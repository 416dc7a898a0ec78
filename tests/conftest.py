"""
Shared fixtures: every test gets a fresh in-memory lab.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest


@pytest.fixture
def store():
    from cognilab.db.fixtures import fixture_tables
    from cognilab.db.store import MemoryStore

    return MemoryStore(fixture_tables())


@pytest.fixture
def catalog():
    from knowledge.lab import ReferenceCatalog, DEFAULT_CATALOG_PATH

    return ReferenceCatalog.from_yaml(DEFAULT_CATALOG_PATH)


@pytest.fixture
def engine(store, catalog):
    from cognilab.engines import LabEngine

    return LabEngine(store=store, catalog=catalog)


@pytest.fixture
def medtech():
    from cognilab.models import Actor

    return Actor(name="MedTech User", encryption_key="ENC_KEY_001", id="user-001")


@pytest.fixture
def faculty():
    from cognilab.models import Actor

    return Actor(name="BSMT Faculty Member", encryption_key="ENC_KEY_ADMIN", id="user-009")


@pytest.fixture
def juan_form():
    return {
        "patient_id_no": "P-0001",
        "last_name": "Dela Cruz",
        "first_name": "Juan",
        "age": 34,
        "birthdate": "1991-06-12",
        "sex": "Male",
        "contact_no": "09171234567",
        "municipality": "Quezon City",
        "province": "Metro Manila",
        "medical_history": "None",
        "medications": "None",
        "allergy": "None",
    }
