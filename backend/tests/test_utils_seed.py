"""Test seeding utilities.

Cassettes are inserted directly so a test can start from any status without walking
the lifecycle first; everything after seeding goes through the services or the API.
"""
import itertools
import uuid
from typing import List, Optional
from cassette_rc import get_db
from cassette_rc.models.cassette import Cassette

_seq = itertools.count(1)


def unique_serial(prefix: str = 'CST') -> str:
    return f'{prefix}-{next(_seq):05d}-{uuid.uuid4().hex[:6]}'


def ensure_cassette(serial: Optional[str] = None, bank_id: int = 1, status: str = Cassette.STATUS_OK,
                    type_code: str = 'RB', machine_id: Optional[str] = 'ATM-001') -> Cassette:
    """Insert a cassette (or return the existing one for ``serial``)."""
    session = get_db()
    serial = serial or unique_serial()
    c = session.query(Cassette).filter_by(serial_number=serial).one_or_none()
    if not c:
        c = Cassette(serial_number=serial, type_code=type_code, bank_id=bank_id, status=status, machine_id=machine_id)
        session.add(c); session.commit(); session.refresh(c)
    return c


def ensure_cassettes(count: int, bank_id: int = 1, status: str = Cassette.STATUS_OK) -> List[Cassette]:
    return [ensure_cassette(bank_id=bank_id, status=status) for _ in range(count)]


def reload(model, row_id: int):
    """Fresh read bypassing the identity map."""
    session = get_db()
    session.expire_all()
    return session.get(model, row_id)


__all__ = ['unique_serial', 'ensure_cassette', 'ensure_cassettes', 'reload']
