from __future__ import annotations
from flask import Blueprint, request, abort
from flask_jwt_extended import get_jwt
from cassette_rc import get_db
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.decorators.auth import require_permissions
from cassette_rc.decorators.audit import audit_log
from cassette_rc.services import service_orders, onsite_gate, logistics, repair_orchestrator
from cassette_rc.services.lookups import get_order
from cassette_rc.services.policy import assert_bank_access, current_actor_id
from cassette_rc.utils.filters import apply_filters
from cassette_rc.utils.listing import list_response, item_response, latest_timestamp
from cassette_rc.utils.sorting import apply_multi_sort
from cassette_rc.utils.validation import json_body, require_fields, optional_int, parse_datetime
from cassette_rc.routes.serializers import (
    order_json, delivery_json, return_json, repair_json, detail_json, cassette_json, with_effects,
)

so_bp = Blueprint('service_orders', __name__)

SO = ServiceOrder


def _scoped_order(order_id: int) -> ServiceOrder:
    order = get_order(get_db(), order_id)
    assert_bank_access(order.bank_id)
    return order


def _prefetch_order(order_id):
    if order_id is None:
        return {}
    o = get_db().get(SO, int(order_id))
    return {'status': o.status, 'repair_location': o.repair_location} if o else {}


def _order_body(order: ServiceOrder, fx=None):
    body = order_json(order)
    if fx is not None:
        with_effects(body, fx)
    return body


@so_bp.get('')
@require_permissions('SO.READ')
def list_orders():
    session = get_db()
    claims = get_jwt()
    q = session.query(SO).filter(SO.deleted_at.is_(None))
    bank_ids = claims.get('bank_ids') or []
    if bank_ids:
        q = q.filter(SO.bank_id.in_(bank_ids))
    filter_specs = {
        'status': {'op': lambda qu, v: qu.filter(SO.status == v), 'validate': lambda v: v in SO.ALL_STATUSES},
        'repair_location': {'op': lambda qu, v: qu.filter(SO.repair_location == v), 'validate': lambda v: v in SO.ALL_LOCATIONS},
        'priority': {'op': lambda qu, v: qu.filter(SO.priority == v), 'validate': lambda v: v in SO.PRIORITIES},
        'bank_id': {'coerce': int, 'op': lambda qu, v: qu.filter(SO.bank_id == v)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {
        'ticket_number': SO.ticket_number,
        'status': SO.status,
        'priority': SO.priority,
        'created_at': SO.created_at,
        'updated_at': SO.updated_at,
        'id': SO.id,
    }
    q = apply_multi_sort(q, request.args.get('sort'), allowed, SO.id)
    return list_response(q, order_json)


@so_bp.post('')
@require_permissions('SO.CREATE')
@audit_log('SO.OPEN', entity='ServiceOrder', entity_id_key='id', meta_keys=['ticket_number', 'status', 'repair_location'])
def open_order():
    data = json_body()
    lines = data.get('cassettes')
    if lines is None and data.get('cassette_ids') is not None:
        if not isinstance(data['cassette_ids'], list):
            abort(400, description='cassette_ids must be a list')
        lines = [{'cassette_id': cid} for cid in data['cassette_ids']]
    if not isinstance(lines, list):
        abort(400, description='cassettes required')
    require_fields(data, 'title')
    order, fx = service_orders.open_order(
        current_actor_id(), lines, title=data['title'], description=data.get('description'),
        priority=data.get('priority') or 'MEDIUM', repair_location=data.get('repair_location') or SO.LOCATION_RC,
        authorize=assert_bank_access,
    )
    return _order_body(order, fx), 201


@so_bp.get('/<int:order_id>')
@require_permissions('SO.READ')
def get_order_detail(order_id: int):
    session = get_db()
    order = _scoped_order(order_id)
    body = order_json(order)
    body['delivery'] = delivery_json(order.delivery)
    body['return'] = return_json(order.cassette_return)
    repairs = repair_orchestrator.order_repairs(session, order.id)
    body['repairs'] = [repair_json(t) for t in repairs]
    body['effective_status'] = service_orders.effective_status(order)
    return item_response(order.id, body, latest_timestamp(order.updated_at, *(t.updated_at for t in repairs)))


@so_bp.post('/<int:order_id>/request-on-site')
@require_permissions('SO.CREATE')
@audit_log('SO.ONSITE.REQUEST', entity='ServiceOrder', entity_id_arg='order_id', diff_keys=['status', 'repair_location'],
           pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')))
def request_on_site(order_id: int):
    _scoped_order(order_id)
    order, fx = onsite_gate.request(order_id)
    return _order_body(order, fx)


@so_bp.post('/<int:order_id>/approve-on-site')
@require_permissions('SO.APPROVE')
@audit_log('SO.ONSITE.APPROVE', entity='ServiceOrder', entity_id_arg='order_id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')))
def approve_on_site(order_id: int):
    _scoped_order(order_id)
    order, fx = onsite_gate.approve(order_id, current_actor_id())
    return _order_body(order, fx)


@so_bp.post('/<int:order_id>/reject-on-site')
@require_permissions('SO.APPROVE')
@audit_log('SO.ONSITE.REJECT', entity='ServiceOrder', entity_id_arg='order_id', diff_keys=['status', 'repair_location'],
           pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')))
def reject_on_site(order_id: int):
    data = json_body()
    _scoped_order(order_id)
    order, fx = onsite_gate.reject(order_id, data.get('reason') or '')
    return _order_body(order, fx)


@so_bp.post('/delivery')
@require_permissions('SO.DELIVER')
@audit_log('SO.DELIVERY.CREATE', entity='ServiceOrder', entity_id_key='order_id', meta_keys=['tracking_number', 'courier_service'])
def create_delivery():
    data = json_body()
    require_fields(data, 'order_id')
    order_id = optional_int(data, 'order_id')
    _scoped_order(order_id)
    delivery, fx = logistics.create_delivery(
        order_id, current_actor_id(),
        cassette_id=optional_int(data, 'cassette_id'),
        courier_service=data.get('courier_service'),
        tracking_number=data.get('tracking_number'),
        shipped_at=parse_datetime(data.get('shipped_at'), 'shipped_at'),
        estimated_arrival=parse_datetime(data.get('estimated_arrival'), 'estimated_arrival'),
        notes=data.get('notes'),
    )
    return with_effects(delivery_json(delivery), fx), 201


@so_bp.post('/<int:order_id>/receive-delivery')
@require_permissions('SO.RECEIVE')
@audit_log('SO.DELIVERY.RECEIVE', entity='ServiceOrder', entity_id_arg='order_id', meta_keys=['method'])
def receive_delivery(order_id: int):
    data = json_body()
    _scoped_order(order_id)
    delivery, fx = logistics.receive_delivery(order_id, current_actor_id(), notes=data.get('notes'))
    return with_effects(delivery_json(delivery), fx)


@so_bp.post('/return')
@require_permissions('SO.RETURN')
@audit_log('SO.RETURN.CREATE', entity='ServiceOrder', entity_id_key='order_id',
           meta_keys=['outcome', 'picked_up_count', 'disposed_count', 'replaced_count'])
def create_return():
    data = json_body()
    require_fields(data, 'order_id')
    order_id = optional_int(data, 'order_id')
    _scoped_order(order_id)
    ret, fx = service_orders.confirm_pickup(
        order_id, current_actor_id(), recipient_name=data.get('recipient_name'),
        signature=data.get('signature'), notes=data.get('notes'),
    )
    return with_effects(return_json(ret), fx), 201


@so_bp.post('/<int:order_id>/advance')
@require_permissions('SO.ADVANCE')
@audit_log('SO.ADVANCE', entity='ServiceOrder', entity_id_arg='order_id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')))
def advance_order(order_id: int):
    data = json_body()
    require_fields(data, 'status')
    _scoped_order(order_id)
    order, fx = service_orders.advance(order_id, data['status'], current_actor_id(), reason=data.get('reason'))
    return _order_body(order, fx)


@so_bp.post('/<int:order_id>/replacement')
@require_permissions('SO.REPLACE')
@audit_log('SO.REPLACEMENT', entity='ServiceOrder', entity_id_arg='order_id', meta_keys=['detail', 'replacement'])
def create_replacement(order_id: int):
    data = json_body()
    require_fields(data, 'detail_id')
    _scoped_order(order_id)
    detail, new, fx = service_orders.create_replacement(
        order_id, optional_int(data, 'detail_id'),
        new_cassette_id=optional_int(data, 'new_cassette_id'),
        new_serial_number=data.get('new_serial_number'),
        type_code=data.get('type_code'),
    )
    return with_effects({'detail': detail_json(detail), 'replacement': cassette_json(new)}, fx), 201


@so_bp.delete('/<int:order_id>')
@require_permissions('SO.DELETE')
@audit_log('SO.DELETE', entity='ServiceOrder', entity_id_arg='order_id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_order(kw.get('order_id')))
def delete_order(order_id: int):
    data = json_body()
    reason = data.get('reason') or request.args.get('reason')
    _scoped_order(order_id)
    order, fx = service_orders.cancel(order_id, current_actor_id(), reason)
    return _order_body(order, fx)
