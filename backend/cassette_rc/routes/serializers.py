from __future__ import annotations
from typing import Any, Dict, Optional
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder, ServiceOrderDetail, Delivery, CassetteReturn
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance, PMCassetteDetail
from cassette_rc.utils.validation import iso


def cassette_json(c: Cassette) -> Dict[str, Any]:
    return {
        'id': c.id,
        'serial_number': c.serial_number,
        'type_code': c.type_code,
        'status': c.status,
        'bank_id': c.bank_id,
        'machine_id': c.machine_id,
        'replaced_cassette_id': c.replaced_cassette_id,
        'replacement_order_id': c.replacement_order_id,
        'notes': c.notes,
    }


def detail_json(d: ServiceOrderDetail) -> Dict[str, Any]:
    return {
        'id': d.id,
        'cassette_id': d.cassette_id,
        'title': d.title,
        'description': d.description,
        'request_replacement': d.request_replacement,
        'replacement_reason': d.replacement_reason,
        'replacement_cassette_id': d.replacement_cassette_id,
        'settlement': d.settlement,
    }


def delivery_json(d: Optional[Delivery]) -> Optional[Dict[str, Any]]:
    if d is None:
        return None
    return {
        'id': d.id,
        'order_id': d.order_id,
        'cassette_id': d.cassette_id,
        'method': d.method,
        'courier_service': d.courier_service,
        'tracking_number': d.tracking_number,
        'shipped_at': iso(d.shipped_at),
        'estimated_arrival': iso(d.estimated_arrival),
        'sent_by': d.sent_by,
        'received_at': iso(d.received_at),
        'received_by': d.received_by,
        'notes': d.notes,
    }


def return_json(r: Optional[CassetteReturn]) -> Optional[Dict[str, Any]]:
    if r is None:
        return None
    return {
        'id': r.id,
        'order_id': r.order_id,
        'outcome': r.outcome,
        'recipient_name': r.recipient_name,
        'notes': r.notes,
        'picked_up_count': r.picked_up_count,
        'disposed_count': r.disposed_count,
        'replaced_count': r.replaced_count,
        'confirmed_by': r.confirmed_by,
        'confirmed_at': iso(r.confirmed_at),
    }


def order_json(o: ServiceOrder) -> Dict[str, Any]:
    return {
        'id': o.id,
        'ticket_number': o.ticket_number,
        'status': o.status,
        'repair_location': o.repair_location,
        'priority': o.priority,
        'title': o.title,
        'description': o.description,
        'bank_id': o.bank_id,
        'reported_by': o.reported_by,
        'approved_by': o.approved_by,
        'approved_at': iso(o.approved_at),
        'on_site_rejection_reason': o.on_site_rejection_reason,
        'resolved_at': iso(o.resolved_at),
        'closed_at': iso(o.closed_at),
        'cancel_reason': o.cancel_reason,
        'deleted_at': iso(o.deleted_at),
        'details': [detail_json(d) for d in o.details],
    }


def repair_json(t: RepairTicket) -> Dict[str, Any]:
    return {
        'id': t.id,
        'order_id': t.order_id,
        'cassette_id': t.cassette_id,
        'status': t.status,
        'qc_result': t.qc_result,
        'parts_replaced': t.parts_replaced or [],
        'findings': t.findings,
        'repair_action': t.repair_action,
        'assigned_user_id': t.assigned_user_id,
        'received_at': iso(t.received_at),
        'completed_at': iso(t.completed_at),
    }


def pm_detail_json(d: PMCassetteDetail) -> Dict[str, Any]:
    return {
        'id': d.id,
        'cassette_id': d.cassette_id,
        'status': d.status,
        'checklist': d.checklist or {},
        'findings': d.findings,
        'actions_taken': d.actions_taken,
        'parts_replaced': d.parts_replaced or [],
        'found_fault': d.found_fault,
    }


def pm_json(pm: PreventiveMaintenance) -> Dict[str, Any]:
    return {
        'id': pm.id,
        'pm_number': pm.pm_number,
        'pm_type': pm.pm_type,
        'status': pm.status,
        'title': pm.title,
        'description': pm.description,
        'bank_id': pm.bank_id,
        'scheduled_date': iso(pm.scheduled_date),
        'assigned_engineer': pm.assigned_engineer,
        'requested_by': pm.requested_by,
        'notes': pm.notes,
        'started_at': iso(pm.started_at),
        'completed_at': iso(pm.completed_at),
        'cancelled_at': iso(pm.cancelled_at),
        'cancel_reason': pm.cancel_reason,
        'auto_schedule': pm.auto_schedule,
        'interval_days': pm.interval_days,
        'next_pm_date': iso(pm.next_pm_date),
        'next_pm_id': pm.next_pm_id,
        'source_pm_id': pm.source_pm_id,
        'details': [pm_detail_json(d) for d in pm.details],
    }


def with_effects(body: Dict[str, Any], fx) -> Dict[str, Any]:
    body['effects'] = fx.as_list()
    return body

