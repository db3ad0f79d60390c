from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from flask import request, abort, make_response, jsonify
from sqlalchemy.orm import Query
from cassette_rc.config.pagination import normalize_pagination
import hashlib
import json
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """UTC tz-aware timestamp truncated to whole seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def _iso(dt: Optional[datetime]) -> str:
    return canonicalize_timestamp(dt).isoformat().replace('+00:00', 'Z') if dt else ''


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable[Any], total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def _validator_headers(resp, etag: str, latest_ts: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_ts:
        latest_c = canonicalize_timestamp(latest_ts)
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = _iso(latest_c)
    return resp


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """304 response when If-None-Match (checked first) or If-Modified-Since is satisfied, else None."""
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        return _validator_headers(make_response('', 304), etag_value, latest_ts)
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt and canonicalize_timestamp(latest_ts) <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
            return _validator_headers(make_response('', 304), etag_value, latest_ts)
    return None


def list_response(q: Query, to_json: Callable[[Any], Dict[str, Any]], ts_attr: str = 'updated_at'):
    """Paginate ``q`` and answer with the ``{data, pagination}`` envelope plus cache validators."""
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    stamps = [getattr(r, ts_attr) for r in rows if getattr(r, ts_attr, None)]
    latest_ts = max(stamps, key=canonicalize_timestamp) if stamps else None
    etag = compute_etag([r.id for r in rows], total, limit, offset, _iso(latest_ts))
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    body = {
        'data': [to_json(r) for r in rows],
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)},
    }
    return _validator_headers(make_response(jsonify(body)), etag, latest_ts)


def latest_timestamp(*stamps: Optional[datetime]) -> Optional[datetime]:
    present = [s for s in stamps if s]
    return max(present, key=canonicalize_timestamp) if present else None


def body_digest(body: Dict[str, Any]) -> str:
    return hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode()).hexdigest()[:16]


def item_response(row_id: int, body: Dict[str, Any], latest_ts: Optional[datetime]):
    """Single-resource response; the ETag covers the whole body so nested rows
    (repairs, delivery, PM details) invalidate it even when the parent row is unchanged.
    """
    etag = compute_etag([row_id], 1, 1, 0, f"{_iso(latest_ts)}|{body_digest(body)}")
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return _validator_headers(make_response(jsonify(body)), etag, latest_ts)
