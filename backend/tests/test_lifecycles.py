from cassette_rc.lifecycles import ORDER_FSM, REPAIR_FSM, PM_FSM, CASSETTE_EVENTS, EVENT_MARK_BAD
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder
from cassette_rc.models.repair_ticket import RepairTicket
from cassette_rc.models.preventive_maintenance import PreventiveMaintenance


def test_healthz(client):
    resp = client.get('/healthz')
    assert resp.status_code == 200
    assert resp.get_json() == {'status': 'ok'}


def test_lifecycles_endpoint_publishes_tables(client):
    body = client.get('/lifecycles').get_json()
    so = body['ServiceOrder']
    assert so['OPEN'] == ['CANCELLED', 'IN_DELIVERY', 'PENDING_APPROVAL']
    assert so['CLOSED'] == [] and so['CANCELLED'] == []
    assert body['RepairTicket']['RECEIVED'] == ['DIAGNOSING']
    assert body['Cassette']['external_events'] == ['MARK_BAD']
    assert body['Cassette']['events']['QC_FAIL'] == {'IN_REPAIR': 'SCRAPPED'}


def test_order_graph_is_closed_over_statuses():
    assert set(ORDER_FSM.graph) == set(ServiceOrder.ALL_STATUSES)
    for targets in ORDER_FSM.graph.values():
        assert targets <= set(ServiceOrder.ALL_STATUSES)
    # every non-closed order may be cancelled
    for status in ServiceOrder.ALL_STATUSES:
        if status not in ServiceOrder.TERMINAL_STATUSES:
            assert ORDER_FSM.can_transition(status, ServiceOrder.STATUS_CANCELLED)
    assert not ORDER_FSM.can_transition(ServiceOrder.STATUS_CLOSED, ServiceOrder.STATUS_CANCELLED)
    # no shortcut past delivery or approval
    assert not ORDER_FSM.can_transition(ServiceOrder.STATUS_OPEN, ServiceOrder.STATUS_RECEIVED)
    assert not ORDER_FSM.can_transition(ServiceOrder.STATUS_OPEN, ServiceOrder.STATUS_IN_PROGRESS)
    assert not ORDER_FSM.can_transition(ServiceOrder.STATUS_IN_PROGRESS, ServiceOrder.STATUS_CLOSED)


def test_repair_graph_is_linear():
    walk = [RepairTicket.STATUS_RECEIVED, RepairTicket.STATUS_DIAGNOSING, RepairTicket.STATUS_ON_PROGRESS, RepairTicket.STATUS_COMPLETED]
    for current, nxt in zip(walk, walk[1:]):
        assert REPAIR_FSM.graph[current] == {nxt}
    assert REPAIR_FSM.is_terminal(RepairTicket.STATUS_COMPLETED)


def test_pm_graph_terminals():
    assert PM_FSM.is_terminal(PreventiveMaintenance.STATUS_COMPLETED)
    assert PM_FSM.is_terminal(PreventiveMaintenance.STATUS_CANCELLED)
    assert PM_FSM.can_transition(PreventiveMaintenance.STATUS_RESCHEDULED, PreventiveMaintenance.STATUS_RESCHEDULED)
    assert not PM_FSM.can_transition(PreventiveMaintenance.STATUS_SCHEDULED, PreventiveMaintenance.STATUS_COMPLETED)


def test_cassette_events_only_reach_known_statuses():
    for event, edges in CASSETTE_EVENTS.table.items():
        for current, new in edges.items():
            assert current in Cassette.ALL_STATUSES, event
            assert new in Cassette.ALL_STATUSES, event
    assert CASSETTE_EVENTS.external == frozenset({EVENT_MARK_BAD})
