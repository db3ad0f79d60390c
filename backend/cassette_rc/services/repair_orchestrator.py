"""Repair Orchestrator.

Creates one repair ticket per repairable cassette of a received (or on-site
approved) service order, moves each ticket along RECEIVED -> DIAGNOSING ->
ON_PROGRESS -> COMPLETED and, on completion, recomputes the order aggregate in the
same transaction.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import select

from cassette_rc import get_db
from cassette_rc.errors import Conflict, InvalidTransition, ValidationFailed
from cassette_rc.lifecycles import EVENT_OPEN_REPAIR, EVENT_START_ON_SITE_REPAIR, EVENT_QC_PASS, EVENT_QC_FAIL
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.services import cassette_tracker, occupancy, order_progress
from cassette_rc.services.effects import EffectSet, atomic, log_effects
from cassette_rc.services.lookups import get_order, get_repair

# order status -> cassette event used when repair work starts
_START_EVENTS = {
    ServiceOrder.STATUS_RECEIVED: EVENT_OPEN_REPAIR,
    ServiceOrder.STATUS_APPROVED_ON_SITE: EVENT_START_ON_SITE_REPAIR,
}
_STARTED = {ServiceOrder.STATUS_IN_PROGRESS, ServiceOrder.STATUS_RESOLVED, ServiceOrder.STATUS_CLOSED}


def order_repairs(session, order_id: int) -> List[RepairTicket]:
    return list(session.execute(
        select(RepairTicket)
        .where(RepairTicket.order_id == order_id, RepairTicket.deleted_at.is_(None))
        .order_by(RepairTicket.id)
    ).scalars())


def plan_bulk(session, order: ServiceOrder, actor_id: int, fx: EffectSet) -> List[RepairTicket]:
    """Plan repair tickets for ``order`` (already locked) and move it to IN_PROGRESS."""
    status = fx.status_of(order)
    # an order made only of replacement details starts work without any ticket
    if order_repairs(session, order.id) or status in _STARTED:
        raise Conflict(f'Repair work has already started for order {order.ticket_number}')
    event = _START_EVENTS.get(status)
    if event is None:
        raise InvalidTransition(f'Repair work cannot start while order {order.ticket_number} is {status}')
    repairable = [d for d in order.details if not d.request_replacement]
    if len(repairable) > current_app.config['MAX_CASSETTES_PER_ORDER']:
        raise ValidationFailed('Too many cassettes for one bulk repair')
    cassettes = cassette_tracker.lock_cassettes(session, [d.cassette_id for d in repairable]) if repairable else []
    # open_order already refuses a cassette on another active order; this catches
    # tickets written by a concurrent request or by hand
    busy = occupancy.active_repairs_for(session, [c.id for c in cassettes])
    if busy:
        raise Conflict(f'Cassette {busy[0].cassette_id} already has active repair ticket {busy[0].id}')
    for c in cassettes:
        fx.cassette(c, event)
    fx.transition(order, ServiceOrder.STATUS_IN_PROGRESS)
    now = datetime.now(timezone.utc)
    tickets = [
        RepairTicket(order_id=order.id, cassette_id=c.id, created_by=actor_id, received_at=now,
                     status=RepairTicket.STATUS_RECEIVED, qc_result=RepairTicket.QC_PENDING, parts_replaced=[])
        for c in cassettes
    ]
    session.add_all(tickets)
    session.flush()
    # an order made only of replacement details may already be settled
    order_progress.plan_resolution(session, order, fx)
    return tickets


def create_bulk_from_order(order_id: int, actor_id: int) -> Tuple[ServiceOrder, List[RepairTicket], EffectSet]:
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        tickets = plan_bulk(session, order, actor_id, fx)
        fx.apply(session)
    log_effects('repairs.bulk_create', 'order', order_id, fx)
    return order, tickets, fx


def take(ticket_id: int, actor_id: int) -> Tuple[RepairTicket, EffectSet]:
    """Assign the ticket to ``actor_id``; a fresh ticket moves on to DIAGNOSING."""
    session = get_db()
    with atomic(session):
        ticket = get_repair(session, ticket_id, lock=True)
        if ticket.status == RepairTicket.STATUS_COMPLETED:
            raise InvalidTransition(f'Repair ticket {ticket.id} is already completed')
        if ticket.assigned_user_id is not None and ticket.assigned_user_id != actor_id:
            raise Conflict(f'Repair ticket {ticket.id} is already taken by user {ticket.assigned_user_id}')
        fx = EffectSet()
        if ticket.status == RepairTicket.STATUS_RECEIVED:
            fx.transition(ticket, RepairTicket.STATUS_DIAGNOSING)
        ticket.assigned_user_id = actor_id
        fx.apply(session)
    log_effects('repairs.take', 'repair', ticket_id, fx)
    return ticket, fx


def update(ticket_id: int, status: Optional[str] = None, findings: Optional[str] = None,
           repair_action: Optional[str] = None, parts_replaced: Optional[Iterable[str]] = None) -> Tuple[RepairTicket, EffectSet]:
    session = get_db()
    with atomic(session):
        ticket = get_repair(session, ticket_id, lock=True)
        if ticket.status == RepairTicket.STATUS_COMPLETED:
            raise InvalidTransition(f'Repair ticket {ticket.id} is completed and can no longer change')
        if status == RepairTicket.STATUS_COMPLETED:
            raise ValidationFailed('Use the complete operation to finish a repair ticket')
        fx = EffectSet()
        if status and status != ticket.status:
            fx.transition(ticket, status)
        if findings is not None:
            ticket.findings = findings
        if repair_action is not None:
            ticket.repair_action = repair_action
        if parts_replaced is not None:
            ticket.parts_replaced = list(parts_replaced)
        fx.apply(session)
    log_effects('repairs.update', 'repair', ticket_id, fx)
    return ticket, fx


def complete(ticket_id: int, actor_id: int, qc_passed: bool, parts_replaced: Optional[Iterable[str]] = None,
             notes: Optional[str] = None, repair_action: Optional[str] = None) -> Tuple[RepairTicket, EffectSet]:
    """Finish a repair; QC failure is a valid outcome that scraps the cassette."""
    session = get_db()
    with atomic(session):
        ticket = get_repair(session, ticket_id)
        order = get_order(session, ticket.order_id, lock=True)
        ticket = get_repair(session, ticket_id, lock=True)
        fx = EffectSet()
        fx.transition(ticket, RepairTicket.STATUS_COMPLETED)
        cassette = cassette_tracker.lock_cassette(session, ticket.cassette_id)
        fx.cassette(cassette, EVENT_QC_PASS if qc_passed else EVENT_QC_FAIL)
        ticket.qc_result = RepairTicket.QC_PASS if qc_passed else RepairTicket.QC_FAIL
        ticket.completed_at = datetime.now(timezone.utc)
        if ticket.assigned_user_id is None:
            ticket.assigned_user_id = actor_id
        if parts_replaced is not None:
            ticket.parts_replaced = list(parts_replaced)
        if notes:
            ticket.findings = f'{ticket.findings}\n{notes}' if ticket.findings else notes
        if repair_action is not None:
            ticket.repair_action = repair_action
        order_progress.plan_resolution(session, order, fx)
        fx.apply(session)
    log_effects('repairs.complete', 'repair', ticket_id, fx)
    return ticket, fx
