"""Lifecycle tables for every status-bearing entity.

These tables are the only definition of legal moves; services validate against them,
``GET /lifecycles`` publishes them and the tests walk them.
"""
from __future__ import annotations
from cassette_rc.utils.fsm import TransitionValidator, EventTable
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance, PMCassetteDetail

SO = ServiceOrder
# RC flow:      OPEN -> IN_DELIVERY -> RECEIVED -> IN_PROGRESS -> RESOLVED -> CLOSED
# On-site flow: OPEN -> PENDING_APPROVAL -> APPROVED_ON_SITE -> IN_PROGRESS -> RESOLVED -> CLOSED
# Rejection sends PENDING_APPROVAL back to OPEN; every non-CLOSED state may be cancelled.
ORDER_FSM = TransitionValidator({
    SO.STATUS_OPEN: {SO.STATUS_IN_DELIVERY, SO.STATUS_PENDING_APPROVAL, SO.STATUS_CANCELLED},
    SO.STATUS_PENDING_APPROVAL: {SO.STATUS_APPROVED_ON_SITE, SO.STATUS_OPEN, SO.STATUS_CANCELLED},
    SO.STATUS_APPROVED_ON_SITE: {SO.STATUS_IN_PROGRESS, SO.STATUS_CANCELLED},
    SO.STATUS_IN_DELIVERY: {SO.STATUS_RECEIVED, SO.STATUS_CANCELLED},
    SO.STATUS_RECEIVED: {SO.STATUS_IN_PROGRESS, SO.STATUS_CANCELLED},
    SO.STATUS_IN_PROGRESS: {SO.STATUS_RESOLVED, SO.STATUS_CANCELLED},
    SO.STATUS_RESOLVED: {SO.STATUS_CLOSED, SO.STATUS_CANCELLED},
    SO.STATUS_CLOSED: set(),
    SO.STATUS_CANCELLED: set(),
}, entity='ServiceOrder')

RT = RepairTicket
REPAIR_FSM = TransitionValidator({
    RT.STATUS_RECEIVED: {RT.STATUS_DIAGNOSING},
    RT.STATUS_DIAGNOSING: {RT.STATUS_ON_PROGRESS},
    RT.STATUS_ON_PROGRESS: {RT.STATUS_COMPLETED},
    RT.STATUS_COMPLETED: set(),
}, entity='RepairTicket')

PM = PreventiveMaintenance
PM_FSM = TransitionValidator({
    PM.STATUS_SCHEDULED: {PM.STATUS_IN_PROGRESS, PM.STATUS_CANCELLED, PM.STATUS_RESCHEDULED},
    PM.STATUS_RESCHEDULED: {PM.STATUS_SCHEDULED, PM.STATUS_IN_PROGRESS, PM.STATUS_CANCELLED, PM.STATUS_RESCHEDULED},
    PM.STATUS_IN_PROGRESS: {PM.STATUS_COMPLETED, PM.STATUS_CANCELLED},
    PM.STATUS_COMPLETED: set(),
    PM.STATUS_CANCELLED: set(),
}, entity='PreventiveMaintenance')

PMD = PMCassetteDetail
PM_DETAIL_FSM = TransitionValidator({
    PMD.STATUS_PENDING: {PMD.STATUS_IN_PROGRESS, PMD.STATUS_COMPLETED},
    PMD.STATUS_IN_PROGRESS: {PMD.STATUS_COMPLETED},
    PMD.STATUS_COMPLETED: set(),
}, entity='PMCassetteDetail')

C = Cassette
EVENT_REPORT_FAULT = 'REPORT_FAULT'
EVENT_MARK_BAD = 'MARK_BAD'
EVENT_SHIP_TO_RC = 'SHIP_TO_RC'
EVENT_RECEIVE_AT_RC = 'RECEIVE_AT_RC'
EVENT_START_ON_SITE_REPAIR = 'START_ON_SITE_REPAIR'
EVENT_OPEN_REPAIR = 'OPEN_REPAIR'
EVENT_QC_PASS = 'QC_PASS'
EVENT_QC_FAIL = 'QC_FAIL'
EVENT_PICKUP = 'PICKUP'
EVENT_CONFIRM_DISPOSAL = 'CONFIRM_DISPOSAL'
EVENT_HOLD_FOR_REPLACEMENT = 'HOLD_FOR_REPLACEMENT'
EVENT_RETIRE = 'RETIRE'
EVENT_REVERT = 'REVERT'
EVENT_SCHEDULE_PM = 'SCHEDULE_PM'
EVENT_PM_FOUND_FAULT = 'PM_FOUND_FAULT'

CASSETTE_EVENTS = EventTable({
    EVENT_REPORT_FAULT: {C.STATUS_OK: C.STATUS_BAD, C.STATUS_BAD: C.STATUS_BAD},
    EVENT_MARK_BAD: {C.STATUS_OK: C.STATUS_BAD},
    EVENT_SHIP_TO_RC: {C.STATUS_OK: C.STATUS_IN_TRANSIT, C.STATUS_BAD: C.STATUS_IN_TRANSIT},
    EVENT_RECEIVE_AT_RC: {C.STATUS_IN_TRANSIT: C.STATUS_IN_REPAIR},
    EVENT_START_ON_SITE_REPAIR: {C.STATUS_OK: C.STATUS_IN_REPAIR, C.STATUS_BAD: C.STATUS_IN_REPAIR},
    EVENT_OPEN_REPAIR: {C.STATUS_IN_REPAIR: C.STATUS_IN_REPAIR},
    EVENT_QC_PASS: {C.STATUS_IN_REPAIR: C.STATUS_READY_FOR_PICKUP},
    EVENT_QC_FAIL: {C.STATUS_IN_REPAIR: C.STATUS_SCRAPPED},
    EVENT_PICKUP: {C.STATUS_READY_FOR_PICKUP: C.STATUS_OK},
    EVENT_CONFIRM_DISPOSAL: {C.STATUS_SCRAPPED: C.STATUS_SCRAPPED},
    EVENT_HOLD_FOR_REPLACEMENT: {C.STATUS_SCRAPPED: C.STATUS_SCRAPPED},
    EVENT_RETIRE: {
        C.STATUS_BAD: C.STATUS_SCRAPPED,
        C.STATUS_IN_TRANSIT: C.STATUS_SCRAPPED,
        C.STATUS_IN_REPAIR: C.STATUS_SCRAPPED,
        C.STATUS_SCRAPPED: C.STATUS_SCRAPPED,
    },
    EVENT_REVERT: {
        C.STATUS_OK: C.STATUS_OK,
        C.STATUS_BAD: C.STATUS_OK,
        C.STATUS_IN_TRANSIT: C.STATUS_OK,
        C.STATUS_IN_REPAIR: C.STATUS_OK,
        C.STATUS_READY_FOR_PICKUP: C.STATUS_OK,
    },
    EVENT_SCHEDULE_PM: {C.STATUS_OK: C.STATUS_OK, C.STATUS_BAD: C.STATUS_BAD},
    EVENT_PM_FOUND_FAULT: {C.STATUS_OK: C.STATUS_BAD, C.STATUS_BAD: C.STATUS_BAD},
}, external=[EVENT_MARK_BAD], entity='Cassette')


def describe_lifecycles():
    return {
        'ServiceOrder': ORDER_FSM.as_dict(),
        'RepairTicket': REPAIR_FSM.as_dict(),
        'PreventiveMaintenance': PM_FSM.as_dict(),
        'PMCassetteDetail': PM_DETAIL_FSM.as_dict(),
        'Cassette': {
            'events': CASSETTE_EVENTS.as_dict(),
            'external_events': sorted(CASSETTE_EVENTS.external),
        },
    }
