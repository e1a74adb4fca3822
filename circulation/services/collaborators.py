"""
Seams to the systems the circulation engine calls into: permissions,
the audit log and inspection records.
"""
import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from circulation.core import config
from circulation.models.models import AuditLog, Inspection, User

logger = logging.getLogger("circulation.audit")


class PermissionChecker:
    """Answers whether an actor may perform ``action`` in ``module``."""

    def has_permission(self, actor_id, module, action):
        raise NotImplementedError


class RolePermissionChecker(PermissionChecker):
    """Grants privileged actions by the actor's role name."""

    def __init__(self, db, grants=None):
        self.db = db
        self.grants = grants or {
            ("assignments", "delete"): config.PRIVILEGED_ROLES,
            ("assignments", "reopen"): config.ADMIN_ROLES,
            ("users", "assign_role"): config.ADMIN_ROLES,
        }

    def has_permission(self, actor_id, module, action):
        roles = self.grants.get((module, action))
        if not roles or actor_id is None:
            return False
        user = self.db.get(User, actor_id)
        return user is not None and user.role in roles


class AuditSink:
    def log_audit(self, action, entity, entity_id, details, actor_id):
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    """
    Writes ``AuditLog`` rows in their own commit.

    Runs after the business transaction has committed; a failure here is
    logged and never changes the outcome the caller sees.
    """

    def __init__(self, db):
        self.db = db

    def log_audit(self, action, entity, entity_id, details, actor_id):
        if actor_id is None:
            return
        if details is not None and not isinstance(details, str):
            details = json.dumps(details, default=str)
        try:
            self.db.add(AuditLog(action=action, entity=entity, entity_id=str(entity_id),
                                 details=details, user_id=actor_id))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Failed to write audit log {action} {entity}={entity_id}")


def latest_inspection(db, asset_id):
    return (
        db.query(Inspection)
        .filter(Inspection.asset_id == asset_id)
        .order_by(Inspection.inspection_date.desc(), Inspection.id.desc())
        .first()
    )
