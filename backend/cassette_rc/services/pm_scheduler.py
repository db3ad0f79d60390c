"""Routine PM auto-scheduler.

Low-frequency job (run daily by ``scripts/pm_autoschedule.py`` or the
``/preventive-maintenance/auto-schedule`` endpoint). Each completed ROUTINE task
whose ``next_pm_date`` falls inside the look-ahead window spawns its successor
through ``pm_guard.schedule``, the same entry point interactive requests use.
"""
from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select

from cassette_rc import get_db
from cassette_rc.errors import Conflict, InvalidTransition
from cassette_rc.lifecycles import CASSETTE_EVENTS, EVENT_SCHEDULE_PM
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance
from cassette_rc.services import occupancy, pm_guard

PM = PreventiveMaintenance


def due_sources(session, today: date) -> List[PreventiveMaintenance]:
    horizon = today + timedelta(days=current_app.config['PM_AUTOSCHEDULE_LOOKAHEAD_DAYS'])
    return list(session.execute(
        select(PM).where(
            PM.status == PM.STATUS_COMPLETED,
            PM.pm_type == PM.TYPE_ROUTINE,
            PM.auto_schedule.is_(True),
            PM.next_pm_date.is_not(None),
            PM.next_pm_date <= horizon,
            PM.next_pm_id.is_(None),
            PM.deleted_at.is_(None),
        ).order_by(PM.next_pm_date, PM.id)
    ).scalars())


def _eligible_cassettes(session, source: PreventiveMaintenance) -> List[int]:
    ids = [d.cassette_id for d in source.details]
    cassettes = session.execute(select(Cassette).where(Cassette.id.in_(ids))).scalars()
    free = [c.id for c in cassettes if CASSETTE_EVENTS.accepts(c.status, EVENT_SCHEDULE_PM)]
    busy = set(occupancy.active_pms_for(session, free)) | set(occupancy.active_orders_for(session, free))
    return [cid for cid in free if cid not in busy]


def run_auto_schedule(today: Optional[date] = None, dry_run: bool = False) -> Dict[str, Any]:
    session = get_db()
    today = today or date.today()
    created: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    for source in due_sources(session, today):
        cassette_ids = _eligible_cassettes(session, source)
        if not cassette_ids:
            skipped.append({'source_pm_id': source.id, 'reason': 'no available cassettes'})
            current_app.logger.info('pm.autoschedule skip source=%s reason=no available cassettes', source.pm_number)
            continue
        if dry_run:
            created.append({'source_pm_id': source.id, 'cassette_ids': cassette_ids, 'scheduled_date': source.next_pm_date.isoformat()})
            continue
        try:
            pm, _ = pm_guard.schedule(
                cassette_ids, source.next_pm_date, PM.TYPE_ROUTINE, actor_id=source.requested_by,
                title=source.title, description=source.description, assigned_engineer=source.assigned_engineer,
                auto_schedule=True, interval_days=source.interval_days, source_pm_id=source.id,
            )
        except (Conflict, InvalidTransition) as e:
            # state moved between the eligibility read and the locked schedule call
            skipped.append({'source_pm_id': source.id, 'reason': e.description})
            current_app.logger.warning('pm.autoschedule skip source=%s reason=%s', source.pm_number, e.description)
            continue
        created.append({'source_pm_id': source.id, 'pm_id': pm.id, 'pm_number': pm.pm_number, 'cassette_ids': cassette_ids})
        current_app.logger.info('pm.autoschedule created %s from %s', pm.pm_number, source.pm_number)
    return {'date': today.isoformat(), 'dry_run': dry_run, 'created': created, 'skipped': skipped}
