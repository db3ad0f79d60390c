from __future__ import annotations
"""Audit logging decorator for state-changing route handlers.

Usage examples:

@audit_log('SO.OPEN', entity='ServiceOrder', entity_id_key='id', meta_keys=['ticket_number', 'status'])
def open_order():
    ... return {'id': order.id, 'status': order.status, 'effects': [...]}, 201

@audit_log('RPR.COMPLETE', entity='RepairTicket', entity_id_arg='ticket_id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_repair(kw.get('ticket_id')))
def complete_repair(ticket_id): ...

Parameters:
  action: required audit action code (e.g. SO.CANCEL)
  entity: entity label (ServiceOrder, RepairTicket, PreventiveMaintenance, Cassette)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: name of the path parameter to use for entity_id (fallback if entity_id_key absent).
  meta_keys: keys projected from the returned JSON into meta.
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs). Overrides meta_keys.
  diff_keys / pre_fetch: record before/after values of the listed keys.

An ``effects`` list in the returned JSON is always copied into meta so the audit trail
shows every cascaded status change of the operation.

Only successful responses are audited; a raised error propagates untouched. The audit
row is committed in its own step after the operation's transaction has committed.
"""

from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from flask import current_app

from cassette_rc.services.audit import add_audit
from cassette_rc import get_db


def _extract_payload(rv: Any):
    """Return (data, original_rv) where data is the JSON-able dict for inspection."""
    if isinstance(rv, tuple) and rv:
        return rv[0], rv
    return rv, rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data, _ = _extract_payload(rv)
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, rv, args, kwargs) or {}
            else:
                meta = {k: data.get(k) for k in (meta_keys or []) if k in data}
            if 'effects' in data:
                meta['effects'] = data['effects']
            if diff_keys and isinstance(before_snapshot, dict):
                changes = {}
                for k in diff_keys:
                    if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                        changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                if changes:
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta)
                session.commit()
            except Exception:
                # the operation itself already committed; losing its audit row must not turn it into an error
                session.rollback()
                current_app.logger.exception('audit write failed for %s %s=%s', action, entity, entity_id)
            return rv
        return wrapper
    return outer
