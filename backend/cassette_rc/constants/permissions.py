"""Central enum-like definitions to avoid typos in permission/service strings.
Extend cautiously; never rename codes silently, add new ones and retire old ones instead.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['SO', 'RPR', 'PM', 'CST']

SERVICE_ACTIONS = {
    # Service orders (tickets)
    'SO': ['READ', 'CREATE', 'APPROVE', 'DELIVER', 'RECEIVE', 'RETURN', 'REPLACE', 'ADVANCE', 'DELETE'],
    # Repair center work
    'RPR': ['READ', 'MANAGE'],
    # Preventive maintenance
    'PM': ['READ', 'CREATE', 'UPDATE', 'CANCEL', 'DELETE', 'DELETE_ANY', 'SCHEDULE'],
    # Cassettes
    'CST': ['READ', 'MANAGE'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    # Third-party operator: reports faults, ships cassettes, requests maintenance for its banks
    'Pengelola': [
        'SO.READ', 'SO.CREATE', 'SO.DELIVER', 'SO.DELETE',
        'PM.READ', 'PM.CREATE', 'PM.CANCEL',
        'CST.READ',
    ],
    'RC Staff': [
        'SO.READ', 'SO.RECEIVE', 'SO.RETURN', 'SO.REPLACE', 'SO.ADVANCE',
        'RPR.READ', 'RPR.MANAGE',
        'PM.READ', 'PM.UPDATE',
        'CST.READ', 'CST.MANAGE',
    ],
    # RC Manager: everything RC staff does plus approvals and PM administration
    'RC Manager': [
        'SO.READ', 'SO.CREATE', 'SO.APPROVE', 'SO.RECEIVE', 'SO.RETURN', 'SO.REPLACE', 'SO.ADVANCE', 'SO.DELETE',
        'RPR.READ', 'RPR.MANAGE',
        'PM.READ', 'PM.CREATE', 'PM.UPDATE', 'PM.CANCEL', 'PM.DELETE', 'PM.SCHEDULE',
        'CST.READ', 'CST.MANAGE',
    ],
    'Super Admin': ['*'],
}
