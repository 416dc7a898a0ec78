"""
Audit trail.

Every mutating action in the lab is recorded as an append-only audit entry.
Appends are best-effort: a failure to record is logged and never aborts the
business operation that triggered it.

New entries are pushed to in-process subscribers (the live audit-log view).
This publish/subscribe channel is independent of the storage backend, so it
behaves the same on Supabase and on the in-memory store.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import Counter, deque
from typing import Callable, Optional

from cognilab.db.repositories import AuditLogRepository
from cognilab.db.store import Store
from cognilab.models import SYSTEM_ACTOR, Actor, AuditAction, AuditLogEntry

logger = logging.getLogger(__name__)

Subscriber = Callable[[AuditLogEntry], None]


class AuditTrail:
    """
    Append-only audit log with live subscriptions.

    Appending and delivery run under one re-entrant lock, so subscribers see
    entries exactly once and in append order. Entries appended before a
    subscription started are never replayed to it.
    """

    def __init__(
        self,
        repository: Optional[AuditLogRepository] = None,
        store: Optional[Store] = None,
    ):
        self._repo = repository or AuditLogRepository(store)
        self._lock = threading.RLock()
        self._subscribers: dict[int, Subscriber] = {}
        self._tokens = itertools.count(1)
        self._pending: deque[AuditLogEntry] = deque()
        self._delivering = False

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def append(
        self,
        action: AuditAction | str,
        resource: str,
        resource_type: str,
        description: str,
        actor: Optional[Actor] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Record an action. Returns the stored entry, or None if it could not
        be recorded. Never raises.
        """
        actor = actor or SYSTEM_ACTOR
        try:
            row = {
                "user_id": actor.id,
                "user_name": actor.name,
                "encryption_key": actor.encryption_key,
                "action": AuditAction(action).value,
                "resource": resource,
                "resource_type": resource_type,
                "description": description,
                "ip_address": ip_address or actor.ip_address or "N/A",
            }
            with self._lock:
                entry = self._repo.create({k: v for k, v in row.items() if v is not None})
                if entry is None:
                    logger.warning("Audit entry not recorded: %s %s", row["action"], resource)
                    return None
                self._pending.append(entry)
                self._deliver()
            return entry
        except Exception:
            logger.exception("Error logging activity: %s %s", action, resource)
            return None

    def _deliver(self) -> None:
        # A subscriber that appends from its callback lands here re-entrantly;
        # its entry waits in the queue until the outer entry reaches everyone.
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._pending:
                self._publish(self._pending.popleft())
        finally:
            self._delivering = False

    def _publish(self, entry: AuditLogEntry) -> None:
        for token, callback in list(self._subscribers.items()):
            # Skip listeners removed by an earlier callback in this round
            if token not in self._subscribers:
                continue
            try:
                callback(entry)
            except Exception:
                logger.exception("Audit subscriber %s failed", token)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Deliver each newly appended entry to callback.

        Returns an unsubscribe function. Once it returns, callback receives
        nothing further; calling it again is harmless.
        """
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def list(
        self,
        action: Optional[AuditAction | str] = None,
        user_name: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[AuditLogEntry]:
        """
        Entries, most recent first.

        Args:
            action: Only entries with this action.
            user_name: Case-insensitive substring of the actor name.
            search: Case-insensitive substring of actor name, resource or key.
        """
        entries = self._repo.list()
        if action:
            wanted = AuditAction(action)
            entries = [e for e in entries if e.action == wanted]
        if user_name:
            needle = user_name.lower()
            entries = [e for e in entries if needle in e.user_name.lower()]
        if search:
            needle = search.lower()
            entries = [
                e for e in entries
                if needle in e.user_name.lower()
                or needle in e.resource.lower()
                or needle in e.encryption_key.lower()
            ]
        return entries

    def action_counts(self) -> dict[str, int]:
        counts = Counter(entry.action.value for entry in self._repo.list())
        return {action.value: counts.get(action.value, 0) for action in AuditAction}

    def active_sessions(self) -> int:
        """Number of users whose most recent entry is a login."""
        latest: dict[str, AuditLogEntry] = {}
        # Newest first, so the first entry seen per user is the latest
        for entry in self._repo.list():
            latest.setdefault(entry.user_name, entry)
        return sum(1 for entry in latest.values() if entry.action == AuditAction.LOGIN)
