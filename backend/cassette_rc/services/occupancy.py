"""Queries answering "what is this cassette currently booked on?".

Used by the double-booking checks of order opening, PM scheduling and bulk repair
creation. Callers hold the cassette row locks before asking.
"""
from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select

from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder, ServiceOrderDetail
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance, PMCassetteDetail


def active_orders_for(session, cassette_ids: Iterable[int], exclude_order_id: Optional[int] = None) -> Dict[int, ServiceOrder]:
    """cassette_id -> non-terminal, non-deleted order referencing it."""
    ids = list(cassette_ids)
    if not ids:
        return {}
    q = (
        select(ServiceOrderDetail.cassette_id, ServiceOrder)
        .join(ServiceOrder, ServiceOrder.id == ServiceOrderDetail.order_id)
        .where(
            ServiceOrderDetail.cassette_id.in_(ids),
            ServiceOrder.deleted_at.is_(None),
            ServiceOrder.status.not_in(ServiceOrder.TERMINAL_STATUSES),
        )
    )
    if exclude_order_id is not None:
        q = q.where(ServiceOrder.id != exclude_order_id)
    return {cid: order for cid, order in session.execute(q).all()}


def active_pms_for(session, cassette_ids: Iterable[int], exclude_pm_id: Optional[int] = None) -> Dict[int, PreventiveMaintenance]:
    ids = list(cassette_ids)
    if not ids:
        return {}
    q = (
        select(PMCassetteDetail.cassette_id, PreventiveMaintenance)
        .join(PreventiveMaintenance, PreventiveMaintenance.id == PMCassetteDetail.pm_id)
        .where(
            PMCassetteDetail.cassette_id.in_(ids),
            PreventiveMaintenance.deleted_at.is_(None),
            PreventiveMaintenance.status.in_(PreventiveMaintenance.ACTIVE_STATUSES),
        )
    )
    if exclude_pm_id is not None:
        q = q.where(PreventiveMaintenance.id != exclude_pm_id)
    return {cid: pm for cid, pm in session.execute(q).all()}


def active_repairs_for(session, cassette_ids: Iterable[int]) -> List[RepairTicket]:
    ids = list(cassette_ids)
    if not ids:
        return []
    return list(session.execute(
        select(RepairTicket).where(
            RepairTicket.cassette_id.in_(ids),
            RepairTicket.deleted_at.is_(None),
            RepairTicket.status.in_(RepairTicket.ACTIVE_STATUSES),
        )
    ).scalars())


def replacement_of(session, cassette_id: int):
    """Id of the cassette that replaced ``cassette_id``, if any."""
    return session.execute(select(Cassette.id).where(Cassette.replaced_cassette_id == cassette_id)).scalar()
