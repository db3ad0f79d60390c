from __future__ import annotations
"""Request body helpers shared by the route modules.

Each helper aborts with a 400 carrying a short ``<field> invalid`` style detail so
malformed input never reaches a service.
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional
from flask import abort, request


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='JSON object body required')
    return data


def validate_choice(value: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    if value not in allowed:
        abort(400, description=f"{field_name} invalid")
    return value


def require_fields(data: Dict[str, Any], *names: str):
    missing = [n for n in names if data.get(n) in (None, '')]
    if missing:
        abort(400, description=f"{', '.join(missing)} required")


def optional_int(data: Dict[str, Any], name: str) -> Optional[int]:
    if data.get(name) is None:
        return None
    try:
        return int(data[name])
    except (TypeError, ValueError):
        abort(400, description=f'{name} invalid')


def parse_date(raw: Any, field_name: str) -> Optional[date]:
    if raw in (None, ''):
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        abort(400, description=f'{field_name} must be an ISO date')


def parse_datetime(raw: Any, field_name: str) -> Optional[datetime]:
    if raw in (None, ''):
        return None
    try:
        dt = datetime.fromisoformat(str(raw).replace('Z', '+00:00'))
    except ValueError:
        abort(400, description=f'{field_name} must be an ISO timestamp')
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


__all__ = ['json_body', 'validate_choice', 'require_fields', 'optional_int', 'parse_date', 'parse_datetime', 'iso']
