from __future__ import annotations
from flask import Blueprint, request
from flask_jwt_extended import get_jwt
from cassette_rc import get_db
from cassette_rc.models.cassette import Cassette
from cassette_rc.decorators.auth import require_permissions
from cassette_rc.decorators.audit import audit_log
from cassette_rc.lifecycles import EVENT_MARK_BAD
from cassette_rc.services import cassette_tracker, occupancy
from cassette_rc.services.effects import atomic
from cassette_rc.services.policy import assert_bank_access
from cassette_rc.utils.filters import apply_filters
from cassette_rc.utils.listing import list_response, item_response
from cassette_rc.utils.sorting import apply_multi_sort
from cassette_rc.utils.validation import json_body, require_fields, optional_int
from cassette_rc.routes.serializers import cassette_json, with_effects

cst_bp = Blueprint('cassettes', __name__)

C = Cassette


def _scoped_cassette(cassette_id: int) -> Cassette:
    c = cassette_tracker.get_cassette(get_db(), cassette_id)
    assert_bank_access(c.bank_id)
    return c


@cst_bp.get('')
@require_permissions('CST.READ')
def list_cassettes():
    session = get_db()
    claims = get_jwt()
    q = session.query(C)
    bank_ids = claims.get('bank_ids') or []
    if bank_ids:
        q = q.filter(C.bank_id.in_(bank_ids))
    filter_specs = {
        'status': {'op': lambda qu, v: qu.filter(C.status == v), 'validate': lambda v: v in C.ALL_STATUSES},
        'bank_id': {'coerce': int, 'op': lambda qu, v: qu.filter(C.bank_id == v)},
        'serial': {'op': lambda qu, v: qu.filter(C.serial_number.ilike(f'%{v}%'))},
        'type_code': {'op': lambda qu, v: qu.filter(C.type_code == v)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {
        'serial_number': C.serial_number,
        'status': C.status,
        'updated_at': C.updated_at,
        'id': C.id,
    }
    q = apply_multi_sort(q, request.args.get('sort'), allowed, C.id)
    return list_response(q, cassette_json)


@cst_bp.post('')
@require_permissions('CST.MANAGE')
@audit_log('CST.REGISTER', entity='Cassette', entity_id_key='id', meta_keys=['serial_number', 'bank_id'])
def register_cassette():
    data = json_body()
    require_fields(data, 'serial_number', 'type_code', 'bank_id')
    bank_id = optional_int(data, 'bank_id')
    assert_bank_access(bank_id)
    session = get_db()
    with atomic(session):
        c = cassette_tracker.register(session, data['serial_number'], data['type_code'], bank_id=bank_id,
                                      machine_id=data.get('machine_id'), notes=data.get('notes'))
    return cassette_json(c), 201


@cst_bp.get('/<int:cassette_id>')
@require_permissions('CST.READ')
def get_cassette(cassette_id: int):
    c = _scoped_cassette(cassette_id)
    return item_response(c.id, cassette_json(c), c.updated_at)


@cst_bp.get('/<int:cassette_id>/availability')
@require_permissions('CST.READ')
def cassette_availability(cassette_id: int):
    session = get_db()
    c = _scoped_cassette(cassette_id)
    order = occupancy.active_orders_for(session, [c.id]).get(c.id)
    pm = occupancy.active_pms_for(session, [c.id]).get(c.id)
    repairs = occupancy.active_repairs_for(session, [c.id])
    return {
        'cassette_id': c.id,
        'status': c.status,
        'active_order_id': order.id if order else None,
        'active_pm_id': pm.id if pm else None,
        'active_repair_ids': [t.id for t in repairs],
        'available': order is None and pm is None and not repairs and c.status == C.STATUS_OK,
    }


@cst_bp.post('/<int:cassette_id>/mark-bad')
@require_permissions('CST.MANAGE')
@audit_log('CST.MARK_BAD', entity='Cassette', entity_id_key='id', diff_keys=['status'],
           pre_fetch=lambda a, kw: {'status': getattr(get_db().get(C, kw.get('cassette_id')), 'status', None)})
def mark_bad(cassette_id: int):
    _scoped_cassette(cassette_id)
    c, fx = cassette_tracker.apply(cassette_id, EVENT_MARK_BAD, external=True)
    return with_effects(cassette_json(c), fx)
