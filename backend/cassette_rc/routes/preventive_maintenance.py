from __future__ import annotations
from flask import Blueprint, request, abort
from flask_jwt_extended import get_jwt
from cassette_rc import get_db
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance
from cassette_rc.decorators.auth import require_permissions
from cassette_rc.decorators.audit import audit_log
from cassette_rc.services import pm_guard, pm_scheduler
from cassette_rc.services.lookups import get_pm
from cassette_rc.services.policy import assert_bank_access, current_actor_id, has_permissions
from cassette_rc.utils.filters import apply_filters
from cassette_rc.utils.listing import list_response, item_response
from cassette_rc.utils.sorting import apply_multi_sort
from cassette_rc.utils.validation import json_body, require_fields, optional_int, parse_date, validate_choice
from cassette_rc.routes.serializers import pm_json, pm_detail_json, with_effects

pm_bp = Blueprint('preventive_maintenance', __name__)

PM = PreventiveMaintenance

_EDITABLE = ('title', 'description', 'notes', 'assigned_engineer', 'interval_days')


def _scoped_pm(pm_id: int) -> PreventiveMaintenance:
    pm = get_pm(get_db(), pm_id)
    assert_bank_access(pm.bank_id)
    return pm


def _prefetch_pm(pm_id):
    pm = get_db().get(PM, pm_id)
    if not pm:
        return {}
    return {'status': pm.status, 'scheduled_date': pm.scheduled_date.isoformat() if pm.scheduled_date else None,
            'assigned_engineer': pm.assigned_engineer, 'auto_schedule': pm.auto_schedule}


@pm_bp.get('')
@require_permissions('PM.READ')
def list_pms():
    session = get_db()
    claims = get_jwt()
    q = session.query(PM).filter(PM.deleted_at.is_(None))
    bank_ids = claims.get('bank_ids') or []
    if bank_ids:
        q = q.filter(PM.bank_id.in_(bank_ids))
    filter_specs = {
        'status': {'op': lambda qu, v: qu.filter(PM.status == v), 'validate': lambda v: v in PM.ALL_STATUSES},
        'pm_type': {'op': lambda qu, v: qu.filter(PM.pm_type == v), 'validate': lambda v: v in PM.ALL_TYPES},
        'bank_id': {'coerce': int, 'op': lambda qu, v: qu.filter(PM.bank_id == v)},
        'assigned_engineer': {'coerce': int, 'op': lambda qu, v: qu.filter(PM.assigned_engineer == v)},
    }
    q = apply_filters(q, filter_specs, request.args)
    allowed = {
        'pm_number': PM.pm_number,
        'status': PM.status,
        'scheduled_date': PM.scheduled_date,
        'updated_at': PM.updated_at,
        'id': PM.id,
    }
    q = apply_multi_sort(q, request.args.get('sort'), allowed, PM.id)
    return list_response(q, pm_json)


@pm_bp.post('')
@require_permissions('PM.CREATE')
@audit_log('PM.SCHEDULE', entity='PreventiveMaintenance', entity_id_key='id', meta_keys=['pm_number', 'pm_type', 'scheduled_date'])
def create_pm():
    data = json_body()
    require_fields(data, 'cassette_ids', 'scheduled_date')
    cassette_ids = data['cassette_ids']
    if not isinstance(cassette_ids, list):
        abort(400, description='cassette_ids must be a list')
    pm_type = validate_choice(data.get('pm_type') or PM.TYPE_ROUTINE, PM.ALL_TYPES, 'pm_type')
    try:
        cassette_ids = [int(c) for c in cassette_ids]
    except (TypeError, ValueError):
        abort(400, description='cassette_ids invalid')
    pm, fx = pm_guard.schedule(
        cassette_ids, parse_date(data['scheduled_date'], 'scheduled_date'), pm_type, current_actor_id(),
        title=data.get('title'), description=data.get('description'),
        assigned_engineer=optional_int(data, 'assigned_engineer'),
        auto_schedule=data.get('auto_schedule'), interval_days=optional_int(data, 'interval_days'),
        notes=data.get('notes'), authorize=assert_bank_access,
    )
    return with_effects(pm_json(pm), fx), 201


@pm_bp.get('/<int:pm_id>')
@require_permissions('PM.READ')
def get_pm_detail(pm_id: int):
    pm = _scoped_pm(pm_id)
    return item_response(pm.id, pm_json(pm), pm.updated_at)


@pm_bp.patch('/<int:pm_id>')
@require_permissions('PM.UPDATE')
@audit_log('PM.UPDATE', entity='PreventiveMaintenance', entity_id_key='id', diff_keys=['status', 'scheduled_date', 'assigned_engineer'],
           pre_fetch=lambda a, kw: _prefetch_pm(kw.get('pm_id')))
def update_pm(pm_id: int):
    data = json_body()
    status = data.get('status')
    if status is not None:
        validate_choice(status, PM.ALL_STATUSES)
    _scoped_pm(pm_id)
    fields = {k: data[k] for k in _EDITABLE if k in data}
    for key in ('assigned_engineer', 'interval_days'):
        if key in fields:
            fields[key] = optional_int(data, key)
    pm, fx = pm_guard.update(
        pm_id, current_actor_id(), status=status,
        scheduled_date=parse_date(data.get('scheduled_date'), 'scheduled_date'),
        reason=data.get('reason'), **fields,
    )
    return with_effects(pm_json(pm), fx)


@pm_bp.patch('/<int:pm_id>/cassettes/<int:cassette_id>')
@require_permissions('PM.UPDATE')
@audit_log('PM.DETAIL.UPDATE', entity='PreventiveMaintenance', entity_id_arg='pm_id', meta_keys=['cassette_id', 'status', 'found_fault'])
def update_pm_detail(pm_id: int, cassette_id: int):
    data = json_body()
    checklist = data.get('checklist')
    if checklist is not None and not isinstance(checklist, dict):
        abort(400, description='checklist must be an object')
    parts = data.get('parts_replaced')
    if parts is not None and not isinstance(parts, list):
        abort(400, description='parts_replaced must be a list')
    _scoped_pm(pm_id)
    detail, fx = pm_guard.update_detail(
        pm_id, cassette_id, status=data.get('status'), checklist=checklist,
        findings=data.get('findings'), actions_taken=data.get('actions_taken'),
        parts_replaced=parts, found_fault=data.get('found_fault'),
    )
    return with_effects(pm_detail_json(detail), fx)


@pm_bp.post('/<int:pm_id>/take')
@require_permissions('PM.UPDATE')
@audit_log('PM.TAKE', entity='PreventiveMaintenance', entity_id_key='id', diff_keys=['assigned_engineer'],
           pre_fetch=lambda a, kw: _prefetch_pm(kw.get('pm_id')))
def take_pm(pm_id: int):
    _scoped_pm(pm_id)
    pm, fx = pm_guard.take(pm_id, current_actor_id())
    return with_effects(pm_json(pm), fx)


@pm_bp.post('/<int:pm_id>/cancel')
@require_permissions('PM.CANCEL')
@audit_log('PM.CANCEL', entity='PreventiveMaintenance', entity_id_key='id', diff_keys=['status', 'auto_schedule'],
           pre_fetch=lambda a, kw: _prefetch_pm(kw.get('pm_id')))
def cancel_pm(pm_id: int):
    data = json_body()
    _scoped_pm(pm_id)
    pm, fx = pm_guard.cancel(pm_id, current_actor_id(), data.get('reason'))
    return with_effects(pm_json(pm), fx)


@pm_bp.post('/<int:pm_id>/disable-auto-schedule')
@require_permissions('PM.UPDATE')
@audit_log('PM.AUTO_SCHEDULE.DISABLE', entity='PreventiveMaintenance', entity_id_key='id', diff_keys=['auto_schedule'],
           pre_fetch=lambda a, kw: _prefetch_pm(kw.get('pm_id')))
def disable_auto_schedule(pm_id: int):
    _scoped_pm(pm_id)
    pm = pm_guard.disable_auto_schedule(pm_id)
    return pm_json(pm)


@pm_bp.delete('/<int:pm_id>')
@require_permissions('PM.DELETE')
@audit_log('PM.DELETE', entity='PreventiveMaintenance', entity_id_key='id', meta_keys=['status'])
def delete_pm(pm_id: int):
    _scoped_pm(pm_id)
    pm = pm_guard.soft_delete(pm_id, current_actor_id(), can_delete_any=has_permissions('PM.DELETE_ANY'))
    return {'id': pm.id, 'status': pm.status, 'deleted': True}


@pm_bp.post('/auto-schedule')
@require_permissions('PM.SCHEDULE')
@audit_log('PM.AUTO_SCHEDULE.RUN', entity='PreventiveMaintenance',
           meta_builder=lambda data, rv, a, kw: {'date': data.get('date'), 'dry_run': data.get('dry_run'),
                                                 'created': [c.get('pm_id') for c in data.get('created', [])]})
def run_auto_schedule():
    data = json_body()
    result = pm_scheduler.run_auto_schedule(
        today=parse_date(data.get('date'), 'date'), dry_run=bool(data.get('dry_run')),
    )
    return result
