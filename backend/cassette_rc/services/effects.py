"""Planned status changes and the single step that writes them.

A transition operation builds an ``EffectSet``: each planned change is validated
against its lifecycle table at planning time, so a rejected operation raises before
anything is written. ``EffectSet.apply`` then writes every touched status column with
a compare-and-swap inside the caller's ``atomic`` block.
"""
from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value

from cassette_rc import get_db
from cassette_rc.errors import Conflict, ConcurrentModification
from cassette_rc.lifecycles import ORDER_FSM, REPAIR_FSM, PM_FSM
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance
from cassette_rc.services import cassette_tracker

_FSMS = {
    ServiceOrder: ORDER_FSM,
    RepairTicket: REPAIR_FSM,
    PreventiveMaintenance: PM_FSM,
}

_KINDS = {
    Cassette: 'CASSETTE_STATUS_CHANGED',
    ServiceOrder: 'ORDER_STATUS_CHANGED',
    RepairTicket: 'REPAIR_STATUS_CHANGED',
    PreventiveMaintenance: 'PM_STATUS_CHANGED',
}


@dataclass(frozen=True)
class Effect:
    kind: str
    entity: str
    entity_id: int
    before: str
    after: str
    event: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _key(row) -> Tuple[str, int]:
    return type(row).__name__, row.id


class EffectSet:
    def __init__(self):
        self.effects: List[Effect] = []
        self._rows: Dict[Tuple[str, int], Any] = {}
        self._original: Dict[Tuple[str, int], str] = {}
        self._planned: Dict[Tuple[str, int], str] = {}

    def __iter__(self):
        return iter(self.effects)

    def __len__(self):
        return len(self.effects)

    def status_of(self, row) -> str:
        """Status ``row`` will have once this set is applied."""
        return self._planned.get(_key(row), row.status)

    def cassette(self, cassette: Cassette, event: str, external: bool = False) -> str:
        after = cassette_tracker.plan(self.status_of(cassette), event, external=external)
        self._record(cassette, after, event)
        return after

    def transition(self, row, target: str) -> str:
        _FSMS[type(row)].assert_can_transition(self.status_of(row), target)
        self._record(row, target)
        return target

    def _record(self, row, after: str, event: Optional[str] = None):
        if row.id is None:
            raise ValueError(f'{type(row).__name__} must be flushed before planning a transition')
        key = _key(row)
        before = self.status_of(row)
        if key not in self._rows:
            self._rows[key] = row
            self._original[key] = row.status
        self._planned[key] = after
        # guard events (same status) are still compare-and-swapped but are not effects
        if before != after:
            self.effects.append(Effect(_KINDS[type(row)], type(row).__name__, row.id, before, after, event))

    def apply(self, session) -> List[Effect]:
        session.flush()
        for key, row in self._rows.items():
            expected, final = self._original[key], self._planned[key]
            if isinstance(row, Cassette):
                cassette_tracker.write_status(session, row, expected, final)
            else:
                _compare_and_swap(session, row, expected, final)
        return self.effects

    def as_list(self) -> List[Dict[str, Any]]:
        return [e.as_dict() for e in self.effects]


def _compare_and_swap(session, row, expected: str, final: str):
    model = type(row)
    result = session.execute(
        update(model).where(model.id == row.id, model.status == expected).values(status=final)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification(f'{model.__name__} {row.id} changed status concurrently')
    set_committed_value(row, 'status', final)


@contextmanager
def atomic(session=None):
    """Commit everything done inside the block, or nothing."""
    session = session or get_db()
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        # unique codes are checked before insert; a concurrent writer can still win the race
        session.rollback()
        raise Conflict(f'Duplicate record: {e.orig}') from e
    except Exception:
        session.rollback()
        raise


def log_effects(operation: str, entity: str, entity_id, effects: EffectSet):
    current_app.logger.info(
        '%s %s=%s effects=%s', operation, entity, entity_id,
        ', '.join(f'{e.entity}#{e.entity_id}:{e.before}->{e.after}' for e in effects) or 'none',
    )


__all__ = ['Effect', 'EffectSet', 'atomic', 'log_effects']
