from __future__ import annotations
from typing import Dict, Optional
from flask import abort


def parse_sort(sort_expr: Optional[str], allowed: Dict[str, object]):
    """Yield ``(column, descending)`` for each token of ``status,-updated_at``."""
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('+-')
        if key not in allowed:
            abort(400, description=f'Invalid sort field {key}; expected one of {", ".join(sorted(allowed))}')
        yield allowed[key], desc


def apply_multi_sort(query, sort_expr: Optional[str], allowed: Dict[str, object], tie_breaker):
    """Order a list query by the requested columns, always ending on ``tie_breaker``
    so paging through equal keys stays stable.
    """
    clauses = []
    seen_tie_breaker = False
    for col, desc in parse_sort(sort_expr, allowed):
        clauses.append(col.desc() if desc else col.asc())
        seen_tie_breaker = seen_tie_breaker or col is tie_breaker
    if not seen_tie_breaker:
        clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
