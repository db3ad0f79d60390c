from __future__ import annotations
from typing import Iterable
from sqlalchemy import CheckConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def status_check(values: Iterable[str], name: str, column: str = 'status') -> CheckConstraint:
    """CHECK constraint pinning a status column to its enum values."""
    quoted = ', '.join(f"'{v}'" for v in values)
    return CheckConstraint(f"{column} IN ({quoted})", name=name)
