"""
Lab workflow engine.

Wires the reference catalog, audit trail, billing ledger, result pipeline,
patient registry, user directory and reports against one store, so every
component writes to the same tables and publishes to the same audit
subscribers.
"""

from __future__ import annotations

import logging
from typing import Optional

from knowledge.lab import ReferenceCatalog, get_catalog

from cognilab.db.store import Store, get_store
from cognilab.engines.audit import AuditTrail
from cognilab.engines.billing import BillingLedger
from cognilab.engines.pipeline import ResultPipeline
from cognilab.engines.registration import PatientRegistry
from cognilab.engines.reports import Reports
from cognilab.engines.users import UserDirectory

logger = logging.getLogger(__name__)


class LabEngine:
    """
    Entry point for the lab workflow.

    The server and CLI hold one LabEngine. Tests build their own around a
    fresh MemoryStore.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        catalog: Optional[ReferenceCatalog] = None,
    ):
        self.store = store or get_store()
        self.catalog = catalog or get_catalog()
        self.audit = AuditTrail(store=self.store)
        self.billing = BillingLedger(store=self.store, audit=self.audit, catalog=self.catalog)
        self.results = ResultPipeline(
            store=self.store,
            ledger=self.billing,
            audit=self.audit,
            catalog=self.catalog,
        )
        self.patients = PatientRegistry(
            store=self.store,
            ledger=self.billing,
            audit=self.audit,
            catalog=self.catalog,
        )
        self.users = UserDirectory(store=self.store, audit=self.audit)
        self.reports = Reports(self.patients, self.results, self.billing, self.audit)
        logger.debug("LabEngine ready on %s", type(self.store).__name__)


_engine: Optional[LabEngine] = None


def get_engine() -> LabEngine:
    """Get the shared engine (singleton)."""
    global _engine
    if _engine is None:
        _engine = LabEngine()
    return _engine


def set_engine(engine: LabEngine) -> None:
    global _engine
    _engine = engine


def reset_engine() -> None:
    """Reset the engine singleton (useful for testing)."""
    global _engine
    _engine = None
