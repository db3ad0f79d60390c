"""Delivery/Return Coordinator: physical transit to and from the repair center."""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional, Tuple

from cassette_rc import get_db
from cassette_rc.errors import Conflict, InvalidTransition, PreconditionFailed, ValidationFailed
from cassette_rc.lifecycles import (
    EVENT_SHIP_TO_RC, EVENT_RECEIVE_AT_RC, EVENT_PICKUP, EVENT_CONFIRM_DISPOSAL,
)
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder, ServiceOrderDetail, Delivery, CassetteReturn
from cassette_rc.services import cassette_tracker, order_progress
from cassette_rc.services.effects import EffectSet, atomic, log_effects
from cassette_rc.services.lookups import get_order


def _travels(detail: ServiceOrderDetail, cassette: Cassette, fx: EffectSet) -> bool:
    # scrapped cassettes awaiting replacement are already at the RC
    return not (detail.request_replacement and fx.status_of(cassette) == Cassette.STATUS_SCRAPPED)


def _assert_rc_flow(order: ServiceOrder):
    if order.repair_location == ServiceOrder.LOCATION_ON_SITE:
        raise InvalidTransition(f'Order {order.ticket_number} is repaired on site and is not shipped')


def create_delivery(order_id: int, actor_id: int, cassette_id: Optional[int] = None, courier_service: Optional[str] = None,
                    tracking_number: Optional[str] = None, shipped_at: Optional[datetime] = None,
                    estimated_arrival: Optional[datetime] = None, notes: Optional[str] = None) -> Tuple[Delivery, EffectSet]:
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        _assert_rc_flow(order)
        fx = EffectSet()
        fx.transition(order, ServiceOrder.STATUS_IN_DELIVERY)
        if order.delivery is not None:
            raise Conflict(f'Order {order.ticket_number} already has a delivery record')
        by_cassette = {d.cassette_id: d for d in order.details}
        if cassette_id is not None and cassette_id not in by_cassette:
            raise ValidationFailed(f'Cassette {cassette_id} is not part of order {order.ticket_number}')
        for c in cassette_tracker.lock_cassettes(session, by_cassette):
            if _travels(by_cassette[c.id], c, fx):
                fx.cassette(c, EVENT_SHIP_TO_RC)
        delivery = Delivery(
            order=order,
            cassette_id=cassette_id if cassette_id is not None else order.details[0].cassette_id,
            method=Delivery.METHOD_COURIER,
            courier_service=courier_service,
            tracking_number=tracking_number,
            shipped_at=shipped_at or datetime.now(timezone.utc),
            estimated_arrival=estimated_arrival,
            sent_by=actor_id,
            notes=notes,
        )
        session.add(delivery)
        fx.apply(session)
    log_effects('delivery.create', 'order', order_id, fx)
    return delivery, fx


def receive_delivery(order_id: int, actor_id: int, notes: Optional[str] = None) -> Tuple[Delivery, EffectSet]:
    """Receive the order's cassettes at the RC; repeating it returns the first receipt."""
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        delivery = order.delivery
        if delivery is not None and delivery.received_at is not None:
            return delivery, fx
        _assert_rc_flow(order)
        now = datetime.now(timezone.utc)
        if delivery is None:
            # self-delivery: the reporter brought the cassettes in
            fx.transition(order, ServiceOrder.STATUS_IN_DELIVERY)
            delivery = Delivery(order=order, cassette_id=order.details[0].cassette_id,
                                method=Delivery.METHOD_SELF, shipped_at=now, sent_by=order.reported_by)
            session.add(delivery)
        fx.transition(order, ServiceOrder.STATUS_RECEIVED)
        by_cassette = {d.cassette_id: d for d in order.details}
        for c in cassette_tracker.lock_cassettes(session, by_cassette):
            if not _travels(by_cassette[c.id], c, fx):
                continue
            if fx.status_of(c) != Cassette.STATUS_IN_TRANSIT:
                fx.cassette(c, EVENT_SHIP_TO_RC)
            fx.cassette(c, EVENT_RECEIVE_AT_RC)
        delivery.received_at = now
        delivery.received_by = actor_id
        if notes:
            delivery.notes = f'{delivery.notes}\n{notes}' if delivery.notes else notes
        fx.apply(session)
    log_effects('delivery.receive', 'order', order_id, fx)
    return delivery, fx


def create_return(order_id: int, actor_id: int, recipient_name: Optional[str] = None, signature: Optional[str] = None,
                  notes: Optional[str] = None) -> Tuple[CassetteReturn, EffectSet]:
    """Confirm pickup and/or disposal for every cassette on the order and close it.

    Repaired cassettes are handed back (READY_FOR_PICKUP -> OK), scrapped ones are
    confirmed for disposal and stay SCRAPPED, replacement cassettes are handed over.
    Mixed outcomes are recorded on one combined return record.
    """
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        if order.cassette_return is not None:
            raise Conflict(f'Order {order.ticket_number} already has a return record')
        fx = EffectSet()
        order_progress.plan_resolution(session, order, fx)
        if fx.status_of(order) != ServiceOrder.STATUS_RESOLVED:
            raise PreconditionFailed(f'Order {order.ticket_number} is {fx.status_of(order)}; every repair must be complete before pickup')
        ids = [d.cassette_id for d in order.details] + [d.replacement_cassette_id for d in order.details if d.replacement_cassette_id]
        cassettes = {c.id: c for c in cassette_tracker.lock_cassettes(session, ids)}
        picked = disposed = replaced = 0
        for d in order.details:
            original = cassettes[d.cassette_id]
            if d.request_replacement:
                new = cassettes[d.replacement_cassette_id]
                if fx.status_of(new) != Cassette.STATUS_OK:
                    raise PreconditionFailed(f'Replacement cassette {new.serial_number} is {fx.status_of(new)}')
                fx.cassette(original, EVENT_CONFIRM_DISPOSAL)
                d.settlement = ServiceOrderDetail.SETTLED_REPLACED
                replaced += 1
                continue
            status = fx.status_of(original)
            if status == Cassette.STATUS_READY_FOR_PICKUP:
                fx.cassette(original, EVENT_PICKUP)
                d.settlement = ServiceOrderDetail.SETTLED_PICKED_UP
                picked += 1
            elif status == Cassette.STATUS_SCRAPPED:
                fx.cassette(original, EVENT_CONFIRM_DISPOSAL)
                d.settlement = ServiceOrderDetail.SETTLED_DISPOSED
                disposed += 1
            else:
                raise PreconditionFailed(f'Cassette {original.serial_number} is {status}; expected READY_FOR_PICKUP or SCRAPPED')
        handover = picked + replaced
        if handover and not (signature and recipient_name):
            raise ValidationFailed('signature and recipient_name are required to hand cassettes over')
        if handover and disposed:
            outcome = CassetteReturn.OUTCOME_MIXED
        elif handover:
            outcome = CassetteReturn.OUTCOME_PICKUP
        else:
            outcome = CassetteReturn.OUTCOME_DISPOSAL
        now = datetime.now(timezone.utc)
        ret = CassetteReturn(
            order=order, outcome=outcome, recipient_name=recipient_name, signature=signature, notes=notes,
            picked_up_count=picked, disposed_count=disposed, replaced_count=replaced,
            confirmed_by=actor_id, confirmed_at=now,
        )
        session.add(ret)
        fx.transition(order, ServiceOrder.STATUS_CLOSED)
        order.closed_at = now
        fx.apply(session)
    log_effects('return.create', 'order', order_id, fx)
    return ret, fx
