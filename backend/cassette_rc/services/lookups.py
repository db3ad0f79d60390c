"""Fresh, optionally row-locked reads of the status-bearing records.

Transitions always lock with ``with_for_update`` and ``populate_existing`` so the
row is read from the database at the start of the operation, never from a stale
identity-map copy. Lock order across services: order, repair ticket, PM, cassettes.
"""
from __future__ import annotations
from sqlalchemy import select

from cassette_rc.errors import NotFound
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance


def _fetch(session, model, row_id: int, lock: bool, label: str):
    q = select(model).where(model.id == row_id)
    if lock:
        q = q.with_for_update()
    row = session.execute(q.execution_options(populate_existing=True)).scalar_one_or_none()
    if row is None or (getattr(row, 'deleted_at', None) is not None and model is not ServiceOrder):
        raise NotFound(f'{label} {row_id} not found')
    return row


def get_order(session, order_id: int, lock: bool = False) -> ServiceOrder:
    # cancelled orders stay readable; their CANCELLED status blocks further moves
    return _fetch(session, ServiceOrder, order_id, lock, 'Service order')


def get_repair(session, ticket_id: int, lock: bool = False) -> RepairTicket:
    return _fetch(session, RepairTicket, ticket_id, lock, 'Repair ticket')


def get_pm(session, pm_id: int, lock: bool = False) -> PreventiveMaintenance:
    return _fetch(session, PreventiveMaintenance, pm_id, lock, 'Preventive maintenance')
