"""
Explicit transaction boundary for the circulation services.

A ``UnitOfWork`` wraps one SQLAlchemy session. Services add and update rows
through ``uow.session`` and queue audit entries with ``uow.audit``; nothing
is committed until the ``with`` block exits cleanly. Any exception rolls the
whole block back and drops the queued audit entries.

    with UnitOfWork(db, actor_id=7) as uow:
        tx = borrow.open_borrow(uow, assignment_id, items)
"""
import logging
import threading

from circulation.core.errors import OperationCancelledError, UnauthorizedError

logger = logging.getLogger("circulation.uow")


class UnitOfWork:
    def __init__(self, session, actor_id=None, audit_sink=None):
        self.session = session
        self.actor_id = actor_id
        self._audit_sink = audit_sink
        self._pending_audit = []
        self._cancelled = threading.Event()

    def __enter__(self):
        self._pending_audit = []
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.session.rollback()
            self._pending_audit = []
            return False
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            self._pending_audit = []
            raise
        self._flush_audit()
        return False

    def require_actor(self):
        if self.actor_id is None:
            raise UnauthorizedError()
        return self.actor_id

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def checkpoint(self):
        if self._cancelled.is_set():
            raise OperationCancelledError()

    def audit(self, action, entity, entity_id, details=None):
        self._pending_audit.append((action, entity, entity_id, details))

    def _flush_audit(self):
        entries, self._pending_audit = self._pending_audit, []
        if not entries:
            return
        sink = self._audit_sink
        if sink is None:
            from circulation.services.collaborators import DatabaseAuditSink
            sink = DatabaseAuditSink(self.session)
        for action, entity, entity_id, details in entries:
            sink.log_audit(action, entity, entity_id, details, self.actor_id)
