"""Service order aggregate: is every cassette on the order settled?

A detail is settled when its latest repair ticket is COMPLETED, or, for a detail
flagged for replacement, when a replacement cassette has been bound. The
recomputation runs synchronously inside repair completion, replacement binding and
pickup confirmation so the persisted order status is always authoritative.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy import select

from cassette_rc.models.service_order import ServiceOrder, ServiceOrderDetail
from cassette_rc.models.repair_ticket import RepairTicket

# statuses from which an order may be walked forward to RESOLVED
RESOLVABLE = (ServiceOrder.STATUS_RECEIVED, ServiceOrder.STATUS_APPROVED_ON_SITE, ServiceOrder.STATUS_IN_PROGRESS)


def latest_repairs(session, order: ServiceOrder) -> Dict[int, RepairTicket]:
    rows = session.execute(
        select(RepairTicket)
        .where(RepairTicket.order_id == order.id, RepairTicket.deleted_at.is_(None))
        .order_by(RepairTicket.id)
    ).scalars()
    latest: Dict[int, RepairTicket] = {}
    for t in rows:
        latest[t.cassette_id] = t
    return latest


def detail_settled(detail: ServiceOrderDetail, repairs: Dict[int, RepairTicket], fx=None) -> bool:
    if detail.request_replacement:
        return detail.replacement_cassette_id is not None
    ticket = repairs.get(detail.cassette_id)
    if ticket is None:
        return False
    status = fx.status_of(ticket) if fx is not None else ticket.status
    return status == RepairTicket.STATUS_COMPLETED


def all_settled(session, order: ServiceOrder, fx=None) -> bool:
    if not order.details:
        return False
    repairs = latest_repairs(session, order)
    return all(detail_settled(d, repairs, fx) for d in order.details)


def plan_resolution(session, order: ServiceOrder, fx) -> bool:
    """Walk the order to RESOLVED inside ``fx`` when every detail is settled.

    Pure-replacement orders that never opened repair work pass through
    IN_PROGRESS first so no edge is skipped.
    """
    status = fx.status_of(order)
    if status not in RESOLVABLE or not all_settled(session, order, fx):
        return False
    if status != ServiceOrder.STATUS_IN_PROGRESS:
        fx.transition(order, ServiceOrder.STATUS_IN_PROGRESS)
    fx.transition(order, ServiceOrder.STATUS_RESOLVED)
    order.resolved_at = datetime.now(timezone.utc)
    return True


def effective_status(session, order: ServiceOrder) -> str:
    if order.status in RESOLVABLE and all_settled(session, order):
        return ServiceOrder.STATUS_RESOLVED
    return order.status

