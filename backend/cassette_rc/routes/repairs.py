from __future__ import annotations
from flask import Blueprint, request, abort
from flask_jwt_extended import get_jwt
from cassette_rc import get_db
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.decorators.auth import require_permissions
from cassette_rc.decorators.audit import audit_log
from cassette_rc.services import repair_orchestrator
from cassette_rc.services.lookups import get_order, get_repair
from cassette_rc.services.policy import assert_bank_access, current_actor_id
from cassette_rc.utils.filters import apply_filters
from cassette_rc.utils.listing import list_response, item_response
from cassette_rc.utils.sorting import apply_multi_sort
from cassette_rc.utils.validation import json_body, validate_choice
from cassette_rc.routes.serializers import order_json, repair_json, with_effects

rpr_bp = Blueprint('repairs', __name__)

RT = RepairTicket


def _scoped_repair(ticket_id: int) -> RepairTicket:
    session = get_db()
    t = get_repair(session, ticket_id)
    assert_bank_access(get_order(session, t.order_id).bank_id)
    return t


def _prefetch_repair(ticket_id):
    t = get_db().get(RT, ticket_id)
    if not t:
        return {}
    return {'status': t.status, 'assigned_user_id': t.assigned_user_id, 'qc_result': t.qc_result}


@rpr_bp.get('')
@require_permissions('RPR.READ')
def list_repairs():
    session = get_db()
    claims = get_jwt()
    q = session.query(RT).filter(RT.deleted_at.is_(None))
    bank_ids = claims.get('bank_ids') or []
    if bank_ids:
        q = q.join(ServiceOrder, ServiceOrder.id == RT.order_id).filter(ServiceOrder.bank_id.in_(bank_ids))
    filter_specs = {
        'status': {'op': lambda qu, v: qu.filter(RT.status == v), 'validate': lambda v: v in RT.ALL_STATUSES},
        'order_id': {'coerce': int, 'op': lambda qu, v: qu.filter(RT.order_id == v)},
        'cassette_id': {'coerce': int, 'op': lambda qu, v: qu.filter(RT.cassette_id == v)},
        'assigned_user_id': {'coerce': int, 'op': lambda qu, v: qu.filter(RT.assigned_user_id == v)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {
        'status': RT.status,
        'received_at': RT.received_at,
        'updated_at': RT.updated_at,
        'id': RT.id,
    }
    q = apply_multi_sort(q, request.args.get('sort'), allowed, RT.id)
    return list_response(q, repair_json)


@rpr_bp.get('/<int:ticket_id>')
@require_permissions('RPR.READ')
def get_repair_detail(ticket_id: int):
    t = _scoped_repair(ticket_id)
    return item_response(t.id, repair_json(t), t.updated_at)


@rpr_bp.post('/bulk-from-ticket/<int:order_id>')
@require_permissions('RPR.MANAGE')
@audit_log('RPR.BULK_CREATE', entity='ServiceOrder', entity_id_arg='order_id',
           meta_builder=lambda data, rv, a, kw: {'repair_ids': [t['id'] for t in data.get('repairs', [])]})
def bulk_from_order(order_id: int):
    assert_bank_access(get_order(get_db(), order_id).bank_id)
    order, tickets, fx = repair_orchestrator.create_bulk_from_order(order_id, current_actor_id())
    body = {'order': order_json(order), 'repairs': [repair_json(t) for t in tickets]}
    return with_effects(body, fx), 201


@rpr_bp.post('/<int:ticket_id>/take')
@require_permissions('RPR.MANAGE')
@audit_log('RPR.TAKE', entity='RepairTicket', entity_id_key='id', diff_keys=['status', 'assigned_user_id'],
           pre_fetch=lambda a, kw: _prefetch_repair(kw.get('ticket_id')))
def take_repair(ticket_id: int):
    _scoped_repair(ticket_id)
    t, fx = repair_orchestrator.take(ticket_id, current_actor_id())
    return with_effects(repair_json(t), fx)


@rpr_bp.patch('/<int:ticket_id>')
@require_permissions('RPR.MANAGE')
@audit_log('RPR.UPDATE', entity='RepairTicket', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: _prefetch_repair(kw.get('ticket_id')))
def update_repair(ticket_id: int):
    data = json_body()
    status = data.get('status')
    if status is not None:
        validate_choice(status, RT.ALL_STATUSES)
    parts = data.get('parts_replaced')
    if parts is not None and not isinstance(parts, list):
        abort(400, description='parts_replaced must be a list')
    _scoped_repair(ticket_id)
    t, fx = repair_orchestrator.update(
        ticket_id, status=status, findings=data.get('findings'),
        repair_action=data.get('repair_action'), parts_replaced=parts,
    )
    return with_effects(repair_json(t), fx)


@rpr_bp.post('/<int:ticket_id>/complete')
@require_permissions('RPR.MANAGE')
@audit_log('RPR.COMPLETE', entity='RepairTicket', entity_id_key='id', diff_keys=['status', 'qc_result'],
           pre_fetch=lambda a, kw: _prefetch_repair(kw.get('ticket_id')))
def complete_repair(ticket_id: int):
    data = json_body()
    if not isinstance(data.get('qc_passed'), bool):
        abort(400, description='qc_passed (boolean) required')
    parts = data.get('parts_replaced')
    if parts is not None and not isinstance(parts, list):
        abort(400, description='parts_replaced must be a list')
    _scoped_repair(ticket_id)
    t, fx = repair_orchestrator.complete(
        ticket_id, current_actor_id(), qc_passed=data['qc_passed'], parts_replaced=parts,
        notes=data.get('notes'), repair_action=data.get('repair_action'),
    )
    return with_effects(repair_json(t), fx)
