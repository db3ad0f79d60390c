"""Cassette State Tracker.

Sole writer of ``Cassette.status``. Other services plan cassette events through
``EffectSet.cassette`` and the effect set calls ``write_status`` here when it is applied.
"""
from __future__ import annotations
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm.attributes import set_committed_value

from cassette_rc import get_db
from cassette_rc.errors import NotFound, Conflict, ConcurrentModification
from cassette_rc.lifecycles import CASSETTE_EVENTS
from cassette_rc.models.cassette import Cassette


def lock_cassettes(session, cassette_ids: Iterable[int]) -> List[Cassette]:
    """Row-lock cassettes (ascending id to keep lock order stable) and read them fresh."""
    ids = sorted(set(cassette_ids))
    rows = session.execute(
        select(Cassette).where(Cassette.id.in_(ids)).order_by(Cassette.id)
        .with_for_update().execution_options(populate_existing=True)
    ).scalars().all()
    found = {c.id for c in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise NotFound(f'Cassette {missing[0]} not found')
    return list(rows)


def lock_cassette(session, cassette_id: int) -> Cassette:
    return lock_cassettes(session, [cassette_id])[0]


def plan(current: str, event: str, external: bool = False) -> str:
    return CASSETTE_EVENTS.resolve(current, event, external=external)


def write_status(session, cassette: Cassette, expected: str, new_status: str):
    result = session.execute(
        update(Cassette)
        .where(Cassette.id == cassette.id, Cassette.status == expected)
        .values(status=new_status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification(f'Cassette {cassette.serial_number} changed status concurrently')
    set_committed_value(cassette, 'status', new_status)


def apply(cassette_id: int, event: str, external: bool = True):
    """Apply a single event to one cassette in its own transaction.

    Returns ``(cassette, effects)``; raises IllegalCassetteTransition when the
    cassette's current status does not accept ``event``.
    """
    from cassette_rc.services.effects import EffectSet, atomic, log_effects
    session = get_db()
    with atomic(session):
        cassette = lock_cassette(session, cassette_id)
        fx = EffectSet()
        fx.cassette(cassette, event, external=external)
        fx.apply(session)
    log_effects(f'cassette.{event.lower()}', 'cassette', cassette_id, fx)
    return cassette, fx


def register(session, serial_number: str, type_code: str, bank_id: int, machine_id: Optional[str] = None,
             notes: Optional[str] = None) -> Cassette:
    """Add a new in-service cassette to the current transaction."""
    exists = session.execute(select(Cassette.id).where(Cassette.serial_number == serial_number)).first()
    if exists:
        raise Conflict(f'Cassette serial {serial_number} already registered')
    cassette = Cassette(serial_number=serial_number, type_code=type_code, bank_id=bank_id,
                        machine_id=machine_id, notes=notes, status=Cassette.STATUS_OK)
    session.add(cassette)
    session.flush()
    return cassette


def get_cassette(session, cassette_id: int) -> Cassette:
    cassette = session.get(Cassette, cassette_id)
    if not cassette:
        raise NotFound(f'Cassette {cassette_id} not found')
    return cassette
