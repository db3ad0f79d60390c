"""Reusable test helpers for the service order / repair / PM lifecycles.

Patterns unified:
 - Auth header creation using direct JWT claims.
 - Creation + transition sequencing with assertion helpers.
 - Walking an order to a given stage through the public API.
"""
from __future__ import annotations
from typing import Dict, List, Optional
from flask_jwt_extended import create_access_token
from cassette_rc.constants.permissions import ALL_PERMISSION_CODES

RC_USER = 100
PENGELOLA_USER = 200

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(user_id: int, perms: List[str], bank_ids: Optional[List[int]] = None, roles: Optional[List[str]] = None):
    token = create_access_token(identity=str(user_id), additional_claims={
        'perms': perms,
        'roles': roles or [],
        'bank_ids': bank_ids or [],
    })
    return {'Authorization': f'Bearer {token}'}


def rc_headers(user_id: int = RC_USER):
    """RC side actor holding every capability, no bank scope."""
    return jwt_headers(user_id, list(ALL_PERMISSION_CODES))

# ---------- Assertion Helpers ---------- #

def assert_transition(client, url: str, headers: Dict[str, str], expected_status: int, expected_body_key: str = 'status',
                      expected_body_value: str = None, payload: dict = None, method: str = 'post'):
    resp = getattr(client, method)(url, json=payload or {}, headers=headers)
    assert resp.status_code == expected_status, resp.get_json()
    if expected_status < 400 and expected_body_value is not None:
        body = resp.get_json()
        assert body[expected_body_key] == expected_body_value
    return resp


def create_resource_and_assert(client, url: str, payload: dict, headers: Dict[str, str], expected_status_field: str = 'status',
                               expected_initial_status: str = None):
    resp = client.post(url, json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    if expected_initial_status:
        assert body[expected_status_field] == expected_initial_status
    return body


def effect_pairs(body: dict, entity: str) -> List[tuple]:
    return [(e['before'], e['after']) for e in body.get('effects', []) if e['entity'] == entity]

# ---------- Service order walks ---------- #

def open_order(client, headers, cassette_ids, repair_location: str = 'RC', lines: list = None, **extra):
    payload = {'title': 'Cassette jam', 'repair_location': repair_location,
               'cassettes': lines if lines is not None else [{'cassette_id': cid} for cid in cassette_ids]}
    payload.update(extra)
    expected = 'PENDING_APPROVAL' if repair_location == 'ON_SITE' else 'OPEN'
    return create_resource_and_assert(client, '/tickets', payload, headers, expected_initial_status=expected)


def receive_order(client, headers, order_id: int):
    return assert_transition(client, f'/tickets/{order_id}/receive-delivery', headers, 200).get_json()


def start_repairs(client, headers, order_id: int) -> List[dict]:
    resp = client.post(f'/repairs/bulk-from-ticket/{order_id}', headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['repairs']


def work_repair(client, headers, repair_id: int):
    """RECEIVED -> DIAGNOSING -> ON_PROGRESS."""
    assert_transition(client, f'/repairs/{repair_id}/take', headers, 200, expected_body_value='DIAGNOSING')
    assert_transition(client, f'/repairs/{repair_id}', headers, 200, expected_body_value='ON_PROGRESS',
                      payload={'status': 'ON_PROGRESS', 'findings': 'worn belt'}, method='patch')


def complete_repair(client, headers, repair_id: int, qc_passed: bool = True):
    return assert_transition(client, f'/repairs/{repair_id}/complete', headers, 200, expected_body_value='COMPLETED',
                             payload={'qc_passed': qc_passed, 'parts_replaced': ['belt']}).get_json()


def order_in_repair(client, headers, cassette_ids) -> dict:
    """Open an RC order, self-deliver it and open repair tickets; returns {'order', 'repairs'}."""
    order = open_order(client, headers, cassette_ids)
    receive_order(client, headers, order['id'])
    return {'order': order, 'repairs': start_repairs(client, headers, order['id'])}


def resolved_order(client, headers, cassette_ids, qc_results=None) -> dict:
    state = order_in_repair(client, headers, cassette_ids)
    qc_results = qc_results or [True] * len(state['repairs'])
    for repair, passed in zip(state['repairs'], qc_results):
        work_repair(client, headers, repair['id'])
        complete_repair(client, headers, repair['id'], qc_passed=passed)
    return state


def get_order(client, headers, order_id: int) -> dict:
    resp = client.get(f'/tickets/{order_id}', headers=headers)
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()


__all__ = [
    'RC_USER', 'PENGELOLA_USER', 'jwt_headers', 'rc_headers', 'assert_transition', 'create_resource_and_assert',
    'effect_pairs', 'open_order', 'receive_order', 'start_repairs', 'work_repair', 'complete_repair',
    'order_in_repair', 'resolved_order', 'get_order',
]
