from __future__ import annotations
from typing import Set
from flask import abort
from flask_jwt_extended import get_jwt, get_jwt_identity
from cassette_rc.constants.permissions import ROLE_PRESETS, ALL_PERMISSION_CODES


def current_permissions() -> Set[str]:
    """Permission codes carried by the token plus those of its role presets."""
    claims = get_jwt()
    perms = set(claims.get('perms', []))
    for role in claims.get('roles', []) or []:
        perms.update(ROLE_PRESETS.get(role, []))
    if '*' in perms:
        # Super Admin wildcard
        perms.update(ALL_PERMISSION_CODES)
    return perms


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_actor_id() -> int:
    return int(get_jwt_identity())


def assert_bank_access(bank_id: int):
    """Pengelola tokens carry the banks they operate for; RC staff tokens carry none."""
    claims = get_jwt()
    if not claims.get('bank_ids'):
        return  # No scoping
    if bank_id not in claims['bank_ids']:
        abort(403, description='Bank access denied')
