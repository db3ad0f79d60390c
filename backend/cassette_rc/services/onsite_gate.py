"""On-Site Approval Gate between OPEN and IN_PROGRESS for on-site repairs."""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Tuple

from cassette_rc import get_db
from cassette_rc.errors import PreconditionFailed, ValidationFailed
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.services.effects import EffectSet, atomic, log_effects
from cassette_rc.services.lookups import get_order


def plan_request(order: ServiceOrder, fx: EffectSet):
    fx.transition(order, ServiceOrder.STATUS_PENDING_APPROVAL)
    order.repair_location = ServiceOrder.LOCATION_ON_SITE
    order.on_site_rejection_reason = None


def request(order_id: int) -> Tuple[ServiceOrder, EffectSet]:
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        plan_request(order, fx)
        fx.apply(session)
    log_effects('onsite.request', 'order', order_id, fx)
    return order, fx


def approve(order_id: int, actor_id: int) -> Tuple[ServiceOrder, EffectSet]:
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        fx.transition(order, ServiceOrder.STATUS_APPROVED_ON_SITE)
        if order.repair_location != ServiceOrder.LOCATION_ON_SITE:
            raise PreconditionFailed(f'Order {order.ticket_number} did not request on-site repair')
        order.approved_by = actor_id
        order.approved_at = datetime.now(timezone.utc)
        fx.apply(session)
    log_effects('onsite.approve', 'order', order_id, fx)
    return order, fx


def reject(order_id: int, reason: str) -> Tuple[ServiceOrder, EffectSet]:
    """Send the order back to OPEN on the regular repair-center flow."""
    if not reason or not reason.strip():
        raise ValidationFailed('reason required to reject on-site repair')
    session = get_db()
    with atomic(session):
        order = get_order(session, order_id, lock=True)
        fx = EffectSet()
        fx.transition(order, ServiceOrder.STATUS_OPEN)
        order.repair_location = ServiceOrder.LOCATION_RC
        order.on_site_rejection_reason = reason.strip()
        fx.apply(session)
    log_effects('onsite.reject', 'order', order_id, fx)
    return order, fx
