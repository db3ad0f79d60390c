from __future__ import annotations
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, get_jwt
from cassette_rc import get_db
from cassette_rc.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[Any] = None,
              meta: Optional[Dict[str, Any]] = None) -> AuditLog:
    """Stage an audit row ``(entity, entity_id, action, actor)`` in the current session.

    Only called from ``@audit_log`` after ``require_permissions`` verified the token,
    so the JWT identity and claims are always present.

    Parameters:
      action: action code e.g. SO.OPEN, RPR.COMPLETE, PM.CANCEL
      entity: ServiceOrder, RepairTicket, PreventiveMaintenance or Cassette
      entity_id: primary key, stored as a string
      meta: JSON-safe dict (shallow copied); carries ``effects`` and ``changes``
    """
    claims = get_jwt()
    log = AuditLog(
        actor_user_id=int(get_jwt_identity()),
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        perms_snapshot={'perms': claims.get('perms', []), 'roles': claims.get('roles', [])},
        meta=dict(meta or {}),
    )
    get_db().add(log)
    # committed by the caller
    return log
