"""PM Conflict Guard and the preventive maintenance state machine.

``schedule`` is the single entry point that creates PM tasks, for interactive
requests and for the auto-scheduler alike. It refuses a cassette that already sits
on a non-terminal PM task or on an active service order, and routes every cassette
through the tracker's SCHEDULE_PM event so a cassette away at the RC is refused too.
"""
from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import select, func

from cassette_rc import get_db
from cassette_rc.errors import Conflict, Forbidden, InvalidTransition, NotFound, PreconditionFailed, ValidationFailed
from cassette_rc.lifecycles import PM_DETAIL_FSM, EVENT_SCHEDULE_PM, EVENT_PM_FOUND_FAULT
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance, PMCassetteDetail
from cassette_rc.services import cassette_tracker, occupancy
from cassette_rc.services.effects import EffectSet, atomic, log_effects
from cassette_rc.services.lookups import get_pm

PM = PreventiveMaintenance
PMD = PMCassetteDetail


def next_pm_number(session, today: Optional[date] = None) -> str:
    """PM-YYMMDD<seq>, the sequence restarting every day."""
    today = today or date.today()
    prefix = f"PM-{today:%y%m%d}"
    count = session.execute(select(func.count(PM.id)).where(PM.pm_number.like(f'{prefix}%'))).scalar() or 0
    return f'{prefix}{count + 1:04d}'


def _append_note(pm: PreventiveMaintenance, note: str):
    pm.notes = f'{pm.notes}\n{note}' if pm.notes else note


def schedule(cassette_ids: Iterable[int], scheduled_date: date, pm_type: str, actor_id: int,
             title: Optional[str] = None, description: Optional[str] = None, assigned_engineer: Optional[int] = None,
             auto_schedule: Optional[bool] = None, interval_days: Optional[int] = None, notes: Optional[str] = None,
             source_pm_id: Optional[int] = None,
             authorize: Optional[Callable[[int], None]] = None) -> Tuple[PreventiveMaintenance, EffectSet]:
    ids = list(dict.fromkeys(int(c) for c in cassette_ids))
    if not ids:
        raise ValidationFailed('at least one cassette is required')
    if pm_type not in PM.ALL_TYPES:
        raise ValidationFailed('type invalid')
    if interval_days is not None and interval_days <= 0:
        raise ValidationFailed('interval_days must be positive')
    routine = pm_type == PM.TYPE_ROUTINE
    if auto_schedule and not routine:
        raise ValidationFailed('only ROUTINE maintenance can auto-schedule')
    session = get_db()
    with atomic(session):
        cassettes = cassette_tracker.lock_cassettes(session, ids)
        banks = {c.bank_id for c in cassettes}
        if len(banks) != 1:
            raise ValidationFailed('all cassettes on one PM task must belong to the same bank')
        bank_id = banks.pop()
        if authorize:
            authorize(bank_id)
        fx = EffectSet()
        for c in cassettes:
            fx.cassette(c, EVENT_SCHEDULE_PM)
        busy = occupancy.active_pms_for(session, ids)
        if busy:
            cid, other = next(iter(busy.items()))
            raise Conflict(f'Cassette {cid} already has active PM {other.pm_number}; cannot create simultaneous PM')
        booked = occupancy.active_orders_for(session, ids)
        if booked:
            cid, order = next(iter(booked.items()))
            raise Conflict(f'Cassette {cid} is on active service order {order.ticket_number}')
        auto = routine if auto_schedule is None else bool(auto_schedule)
        pm = PM(
            pm_number=next_pm_number(session),
            pm_type=pm_type,
            status=PM.STATUS_SCHEDULED,
            title=title or f'{pm_type.replace("_", " ").title()} maintenance',
            description=description,
            bank_id=bank_id,
            scheduled_date=scheduled_date,
            assigned_engineer=assigned_engineer,
            requested_by=actor_id,
            notes=notes,
            auto_schedule=auto,
            interval_days=(interval_days or current_app.config['PM_DEFAULT_INTERVAL_DAYS']) if auto else interval_days,
            source_pm_id=source_pm_id,
        )
        for c in cassettes:
            pm.details.append(PMD(cassette_id=c.id, status=PMD.STATUS_PENDING, checklist={}, parts_replaced=[]))
        session.add(pm)
        session.flush()
        if source_pm_id is not None:
            source = session.get(PM, source_pm_id)
            source.next_pm_id = pm.id
            _append_note(source, f'Next routine maintenance scheduled as {pm.pm_number}')
        fx.apply(session)
    log_effects('pm.schedule', 'pm', pm.id, fx)
    return pm, fx


def _assert_open(pm: PreventiveMaintenance, fx: EffectSet):
    status = fx.status_of(pm)
    if status in (PM.STATUS_COMPLETED, PM.STATUS_CANCELLED):
        raise InvalidTransition(f'PM {pm.pm_number} is {status}')


def update(pm_id: int, actor_id: int, status: Optional[str] = None, scheduled_date: Optional[date] = None,
           reason: Optional[str] = None, today: Optional[date] = None, **fields: Any) -> Tuple[PreventiveMaintenance, EffectSet]:
    """Edit a PM task and/or move it along its lifecycle.

    ``fields`` may carry title, description, notes, assigned_engineer, interval_days.
    """
    if status is not None and status not in PM.ALL_STATUSES:
        raise ValidationFailed('status invalid')
    session = get_db()
    with atomic(session):
        pm = get_pm(session, pm_id, lock=True)
        fx = EffectSet()
        _assert_open(pm, fx)
        now = datetime.now(timezone.utc)
        if status == PM.STATUS_RESCHEDULED or (status is None and scheduled_date is not None):
            _plan_reschedule(pm, fx, scheduled_date, today or date.today())
        elif status == PM.STATUS_IN_PROGRESS:
            fx.transition(pm, PM.STATUS_IN_PROGRESS)
            pm.started_at = now
            if pm.assigned_engineer is None:
                pm.assigned_engineer = actor_id
        elif status == PM.STATUS_COMPLETED:
            _plan_complete(pm, fx, actor_id, now)
        elif status == PM.STATUS_CANCELLED:
            _plan_cancel(pm, fx, actor_id, reason, now)
        elif status is not None and status != pm.status:
            fx.transition(pm, status)
        for key in ('title', 'description', 'notes', 'assigned_engineer', 'interval_days'):
            if key in fields and fields[key] is not None:
                if key == 'interval_days' and int(fields[key]) <= 0:
                    raise ValidationFailed('interval_days must be positive')
                setattr(pm, key, fields[key])
        fx.apply(session)
    log_effects(f'pm.update{"." + status.lower() if status else ""}', 'pm', pm_id, fx)
    return pm, fx


def _plan_reschedule(pm: PreventiveMaintenance, fx: EffectSet, new_date: Optional[date], today: date):
    if new_date is None:
        raise ValidationFailed('scheduled_date required to reschedule')
    if new_date <= today:
        raise ValidationFailed('new scheduled_date must be in the future')
    fx.transition(pm, PM.STATUS_RESCHEDULED)
    _append_note(pm, f'Rescheduled from {pm.scheduled_date.isoformat()} to {new_date.isoformat()}')
    pm.scheduled_date = new_date


def _plan_complete(pm: PreventiveMaintenance, fx: EffectSet, actor_id: int, now: datetime):
    fx.transition(pm, PM.STATUS_COMPLETED)
    pending = [d.cassette_id for d in pm.details if d.status != PMD.STATUS_COMPLETED]
    if pending:
        raise PreconditionFailed(f'PM {pm.pm_number} still has unfinished cassettes: {pending}')
    pm.completed_at = now
    pm.completed_by = actor_id
    if pm.pm_type == PM.TYPE_ROUTINE and pm.auto_schedule:
        interval = pm.interval_days or current_app.config['PM_DEFAULT_INTERVAL_DAYS']
        pm.next_pm_date = date.today() + timedelta(days=interval)


def _plan_cancel(pm: PreventiveMaintenance, fx: EffectSet, actor_id: int, reason: Optional[str], now: datetime):
    if not reason or not reason.strip():
        raise ValidationFailed('reason required to cancel maintenance')
    fx.transition(pm, PM.STATUS_CANCELLED)
    pm.cancelled_at = now
    pm.cancelled_by = actor_id
    pm.cancel_reason = reason.strip()
    pm.auto_schedule = False
    pm.next_pm_date = None


def cancel(pm_id: int, actor_id: int, reason: Optional[str]) -> Tuple[PreventiveMaintenance, EffectSet]:
    return update(pm_id, actor_id, status=PM.STATUS_CANCELLED, reason=reason)


def take(pm_id: int, actor_id: int) -> Tuple[PreventiveMaintenance, EffectSet]:
    session = get_db()
    with atomic(session):
        pm = get_pm(session, pm_id, lock=True)
        fx = EffectSet()
        _assert_open(pm, fx)
        if pm.assigned_engineer is not None and pm.assigned_engineer != actor_id:
            raise Conflict(f'PM {pm.pm_number} is already assigned to user {pm.assigned_engineer}')
        pm.assigned_engineer = actor_id
        fx.apply(session)
    current_app.logger.info('pm.take pm=%s engineer=%s', pm_id, actor_id)
    return pm, fx


def update_detail(pm_id: int, cassette_id: int, status: Optional[str] = None, checklist: Optional[Dict[str, Any]] = None,
                  findings: Optional[str] = None, actions_taken: Optional[str] = None,
                  parts_replaced: Optional[List[str]] = None, found_fault: Optional[bool] = None) -> Tuple[PMCassetteDetail, EffectSet]:
    """Record per-cassette work; a fault found while completing marks the cassette BAD."""
    session = get_db()
    with atomic(session):
        pm = get_pm(session, pm_id, lock=True)
        fx = EffectSet()
        _assert_open(pm, fx)
        detail = next((d for d in pm.details if d.cassette_id == cassette_id), None)
        if detail is None:
            raise NotFound(f'Cassette {cassette_id} is not part of PM {pm.pm_number}')
        if status is not None and status != detail.status:
            PM_DETAIL_FSM.assert_can_transition(detail.status, status)
            detail.status = status
        if checklist is not None:
            detail.checklist = {**(detail.checklist or {}), **checklist}
        if findings is not None:
            detail.findings = findings
        if actions_taken is not None:
            detail.actions_taken = actions_taken
        if parts_replaced is not None:
            detail.parts_replaced = list(parts_replaced)
        if found_fault is not None:
            detail.found_fault = bool(found_fault)
        if status == PMD.STATUS_COMPLETED and detail.found_fault:
            fx.cassette(cassette_tracker.lock_cassette(session, cassette_id), EVENT_PM_FOUND_FAULT)
        # details carry no timestamp of their own; the task's Last-Modified covers them
        pm.updated_at = datetime.now(timezone.utc)
        fx.apply(session)
    log_effects('pm.detail', 'pm', pm_id, fx)
    return detail, fx


def disable_auto_schedule(pm_id: int) -> PreventiveMaintenance:
    session = get_db()
    with atomic(session):
        pm = get_pm(session, pm_id, lock=True)
        if pm.pm_type != PM.TYPE_ROUTINE:
            raise ValidationFailed('only ROUTINE maintenance has auto-scheduling')
        pm.auto_schedule = False
        pm.next_pm_date = None
    current_app.logger.info('pm.disable_auto_schedule pm=%s', pm_id)
    return pm


def soft_delete(pm_id: int, actor_id: int, can_delete_any: bool = False) -> PreventiveMaintenance:
    """Hide a PM task; started or finished tasks need the DELETE_ANY capability.

    PM work never moves a cassette out of OK/BAD so there is no cassette status to revert.
    """
    session = get_db()
    with atomic(session):
        pm = get_pm(session, pm_id, lock=True)
        if pm.status in (PM.STATUS_IN_PROGRESS, PM.STATUS_COMPLETED, PM.STATUS_CANCELLED) and not can_delete_any:
            raise Forbidden(f'PM {pm.pm_number} is {pm.status}; deleting it needs PM.DELETE_ANY')
        now = datetime.now(timezone.utc)
        pm.deleted_at = now
        pm.deleted_by = actor_id
        pm.auto_schedule = False
    current_app.logger.info('pm.delete pm=%s by=%s', pm_id, actor_id)
    return pm
