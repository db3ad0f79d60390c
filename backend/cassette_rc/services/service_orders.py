"""Service Order Lifecycle Manager.

Top-level state machine for service orders. Opens and cancels orders, exposes the
generic ``advance`` entry point, binds replacement cassettes and is the only
component that closes an order (through ``confirm_pickup``).
"""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import select, func

from cassette_rc import get_db
from cassette_rc.errors import Conflict, PreconditionFailed, ValidationFailed, NotFound
from cassette_rc.lifecycles import (
    ORDER_FSM, EVENT_REPORT_FAULT, EVENT_HOLD_FOR_REPLACEMENT, EVENT_RETIRE, EVENT_REVERT,
)
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder, ServiceOrderDetail, CassetteReturn
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.services import cassette_tracker, occupancy, order_progress, repair_orchestrator, onsite_gate, logistics
from cassette_rc.services.effects import EffectSet, atomic, log_effects
from cassette_rc.services.lookups import get_order

SO = ServiceOrder

# targets that belong to a dedicated operation rather than to advance()
_OWNED_ELSEWHERE = {
    SO.STATUS_IN_DELIVERY: 'POST /tickets/delivery',
    SO.STATUS_RECEIVED: 'POST /tickets/{id}/receive-delivery',
    SO.STATUS_OPEN: 'POST /tickets/{id}/reject-on-site',
    SO.STATUS_CLOSED: 'POST /tickets/return',
}


def next_ticket_number(session, today: Optional[date] = None) -> str:
    """SO-DDMMYY<seq>, the sequence restarting every day."""
    today = today or date.today()
    prefix = f"SO-{today:%d%m%y}"
    count = session.execute(
        select(func.count(SO.id)).where(SO.ticket_number.like(f'{prefix}%'))
    ).scalar() or 0
    return f'{prefix}{count + 1:04d}'


def _normalize_lines(lines: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    seen = set()
    for line in lines:
        try:
            cid = int(line['cassette_id'])
        except (KeyError, TypeError, ValueError):
            raise ValidationFailed('each cassette entry needs an integer cassette_id')
        if cid in seen:
            raise ValidationFailed(f'Cassette {cid} listed twice')
        seen.add(cid)
        out.append({**line, 'cassette_id': cid})
    if not out:
        raise ValidationFailed('at least one cassette is required')
    if len(out) > current_app.config['MAX_CASSETTES_PER_ORDER']:
        raise ValidationFailed(f"at most {current_app.config['MAX_CASSETTES_PER_ORDER']} cassettes per order")
    return out


def open_order(actor_id: int, lines: Iterable[Dict[str, Any]], title: str, description: Optional[str] = None,
               priority: str = 'MEDIUM', repair_location: str = SO.LOCATION_RC,
               authorize: Optional[Callable[[int], None]] = None) -> Tuple[ServiceOrder, EffectSet]:
    """Open a service order over one or more cassettes.

    Each cassette is reported faulty (OK/BAD -> BAD); an already scrapped cassette
    may only be referenced to request its replacement. On-site orders go straight on
    to PENDING_APPROVAL in the same transaction.
    """
    if priority not in SO.PRIORITIES:
        raise ValidationFailed('priority invalid')
    if repair_location not in SO.ALL_LOCATIONS:
        raise ValidationFailed('repair_location invalid')
    lines = _normalize_lines(lines)
    session = get_db()
    with atomic(session):
        cassettes = {c.id: c for c in cassette_tracker.lock_cassettes(session, [l['cassette_id'] for l in lines])}
        banks = {c.bank_id for c in cassettes.values()}
        if len(banks) != 1:
            raise ValidationFailed('all cassettes on one order must belong to the same bank')
        bank_id = banks.pop()
        if authorize:
            authorize(bank_id)
        fx = EffectSet()
        for line in lines:
            c = cassettes[line['cassette_id']]
            wants_replacement = bool(line.get('request_replacement'))
            if wants_replacement and c.status == Cassette.STATUS_SCRAPPED:
                fx.cassette(c, EVENT_HOLD_FOR_REPLACEMENT)
                if occupancy.replacement_of(session, c.id):
                    raise Conflict(f'Cassette {c.serial_number} has already been replaced')
            else:
                fx.cassette(c, EVENT_REPORT_FAULT)
        booked = occupancy.active_orders_for(session, cassettes)
        if booked:
            cid, other = next(iter(booked.items()))
            raise Conflict(f'Cassette {cassettes[cid].serial_number} is already on active order {other.ticket_number}')
        in_pm = occupancy.active_pms_for(session, cassettes)
        if in_pm:
            cid, pm = next(iter(in_pm.items()))
            raise Conflict(f'Cassette {cassettes[cid].serial_number} is on active preventive maintenance {pm.pm_number}')
        order = SO(
            ticket_number=next_ticket_number(session),
            status=SO.STATUS_OPEN,
            repair_location=SO.LOCATION_RC,
            priority=priority,
            title=title,
            description=description,
            bank_id=bank_id,
            reported_by=actor_id,
        )
        for line in lines:
            order.details.append(ServiceOrderDetail(
                cassette_id=line['cassette_id'],
                title=line.get('title'),
                description=line.get('description'),
                request_replacement=bool(line.get('request_replacement')),
                replacement_reason=line.get('replacement_reason'),
            ))
        session.add(order)
        session.flush()
        if repair_location == SO.LOCATION_ON_SITE:
            onsite_gate.plan_request(order, fx)
        fx.apply(session)
    log_effects('order.open', 'order', order.id, fx)
    return order, fx


def advance(order_id: int, target: str, actor_id: int, reason: Optional[str] = None) -> Tuple[ServiceOrder, EffectSet]:
    """Move an order along one legal edge of its lifecycle."""
    if target not in SO.ALL_STATUSES:
        raise ValidationFailed('status invalid')
    session = get_db()
    order = get_order(session, order_id)
    ORDER_FSM.assert_can_transition(order.status, target)
    if target == SO.STATUS_PENDING_APPROVAL:
        return onsite_gate.request(order_id)
    if target == SO.STATUS_APPROVED_ON_SITE:
        return onsite_gate.approve(order_id, actor_id)
    if target == SO.STATUS_CANCELLED:
        return cancel(order_id, actor_id, reason)
    if target in _OWNED_ELSEWHERE:
        raise PreconditionFailed(f'{target} is reached through {_OWNED_ELSEWHERE[target]}')
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        if target == SO.STATUS_IN_PROGRESS:
            if repair_orchestrator.order_repairs(session, order.id):
                fx.transition(order, SO.STATUS_IN_PROGRESS)
            else:
                repair_orchestrator.plan_bulk(session, order, actor_id, fx)
        elif target == SO.STATUS_RESOLVED:
            if not order_progress.plan_resolution(session, order, fx):
                raise PreconditionFailed(f'Order {order.ticket_number} still has unsettled cassettes')
        fx.apply(session)
    log_effects(f'order.advance.{target.lower()}', 'order', order_id, fx)
    return order, fx


def cancel(order_id: int, actor_id: int, reason: Optional[str] = None) -> Tuple[ServiceOrder, EffectSet]:
    """Soft-delete an order that has not closed; its cassettes go back in service."""
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        fx.transition(order, SO.STATUS_CANCELLED)
        for c in cassette_tracker.lock_cassettes(session, [d.cassette_id for d in order.details]):
            # scrapping is physical and is never undone
            if fx.status_of(c) != Cassette.STATUS_SCRAPPED:
                fx.cassette(c, EVENT_REVERT)
        now = datetime.now(timezone.utc)
        for t in repair_orchestrator.order_repairs(session, order.id):
            if t.status != RepairTicket.STATUS_COMPLETED:
                t.deleted_at = now
        order.deleted_at = now
        order.deleted_by = actor_id
        order.cancel_reason = reason
        fx.apply(session)
    log_effects('order.cancel', 'order', order_id, fx)
    return order, fx


def create_replacement(order_id: int, detail_id: int, new_cassette_id: Optional[int] = None,
                       new_serial_number: Optional[str] = None, type_code: Optional[str] = None) -> Tuple[ServiceOrderDetail, Cassette, EffectSet]:
    """Bind a new cassette to a detail flagged for replacement instead of repairing it."""
    if (new_cassette_id is None) == (not new_serial_number):
        raise ValidationFailed('provide exactly one of new_cassette_id or new_serial_number')
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        if order.status not in order_progress.RESOLVABLE:
            raise PreconditionFailed(f'Order {order.ticket_number} is {order.status}; replacements are bound once it is received')
        detail = next((d for d in order.details if d.id == detail_id), None)
        if detail is None:
            raise NotFound(f'Detail {detail_id} not found on order {order.ticket_number}')
        if not detail.request_replacement:
            raise ValidationFailed(f'Detail {detail_id} did not request a replacement')
        if detail.replacement_cassette_id is not None:
            raise Conflict(f'Detail {detail_id} already has replacement cassette {detail.replacement_cassette_id}')
        fx = EffectSet()
        if new_cassette_id is not None:
            locked = {c.id: c for c in cassette_tracker.lock_cassettes(session, [detail.cassette_id, new_cassette_id])}
            old, new = locked[detail.cassette_id], locked[new_cassette_id]
            if new.id == old.id:
                raise ValidationFailed('a cassette cannot replace itself')
            if new.status != Cassette.STATUS_OK:
                raise PreconditionFailed(f'Replacement cassette {new.serial_number} is {new.status}')
            if new.bank_id != order.bank_id:
                raise ValidationFailed('replacement cassette belongs to another bank')
            if new.replaced_cassette_id is not None or occupancy.active_orders_for(session, [new.id]) \
                    or occupancy.active_pms_for(session, [new.id]):
                raise Conflict(f'Cassette {new.serial_number} is already in use')
            fx.cassette(old, EVENT_RETIRE)
        else:
            old = cassette_tracker.lock_cassette(session, detail.cassette_id)
            fx.cassette(old, EVENT_RETIRE)
            new = cassette_tracker.register(session, new_serial_number, type_code or old.type_code,
                                            bank_id=order.bank_id, machine_id=old.machine_id)
        new.replaced_cassette_id = old.id
        new.replacement_order_id = order.id
        detail.replacement_cassette_id = new.id
        order_progress.plan_resolution(session, order, fx)
        fx.apply(session)
    log_effects('order.replacement', 'order', order_id, fx)
    return detail, new, fx


def confirm_pickup(order_id: int, actor_id: int, recipient_name: Optional[str] = None,
                   signature: Optional[str] = None, notes: Optional[str] = None) -> Tuple[CassetteReturn, EffectSet]:
    return logistics.create_return(order_id, actor_id, recipient_name=recipient_name, signature=signature, notes=notes)


def effective_status(order: ServiceOrder) -> str:
    return order_progress.effective_status(get_db(), order)
