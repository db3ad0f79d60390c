import re
from cassette_rc.models.cassette import Cassette
from cassette_rc.models.service_order import ServiceOrder, CassetteReturn
from cassette_rc import get_db
from tests.test_utils_seed import ensure_cassette, reload
from tests.test_lifecycle_helpers import (
    rc_headers, jwt_headers, assert_transition, open_order, receive_order, start_repairs,
    resolved_order, get_order, effect_pairs,
)


def test_open_order_reports_fault(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id], priority='HIGH')
    assert re.fullmatch(r'SO-\d{6}\d{4}', order['ticket_number'])
    assert order['priority'] == 'HIGH'
    assert order['details'][0]['cassette_id'] == c.id
    assert effect_pairs(order, 'Cassette') == [('OK', 'BAD')]
    assert reload(Cassette, c.id).status == Cassette.STATUS_BAD


def test_scenario_a_self_delivery_receive(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id])
    delivery = receive_order(client, headers, order['id'])
    assert delivery['method'] == 'SELF_DELIVERY'
    assert effect_pairs(delivery, 'ServiceOrder') == [('OPEN', 'IN_DELIVERY'), ('IN_DELIVERY', 'RECEIVED')]
    assert effect_pairs(delivery, 'Cassette') == [('BAD', 'IN_TRANSIT'), ('IN_TRANSIT', 'IN_REPAIR')]
    assert reload(Cassette, c.id).status == Cassette.STATUS_IN_REPAIR
    assert get_order(client, headers, order['id'])['status'] == 'RECEIVED'
    # receiving again is a no-op returning the first receipt
    again = receive_order(client, headers, order['id'])
    assert again['id'] == delivery['id']
    assert again['effects'] == []


def test_courier_delivery_then_receive(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id])
    resp = client.post('/tickets/delivery', json={'order_id': order['id'], 'courier_service': 'JNE',
                                                  'tracking_number': 'TRK-1', 'shipped_at': '2026-01-05T08:00:00Z'},
                       headers=headers)
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['method'] == 'COURIER'
    assert reload(Cassette, c.id).status == Cassette.STATUS_IN_TRANSIT
    dup = client.post('/tickets/delivery', json={'order_id': order['id']}, headers=headers)
    assert dup.status_code == 400  # IN_DELIVERY -> IN_DELIVERY is not an edge
    received = receive_order(client, headers, order['id'])
    assert received['tracking_number'] == 'TRK-1'
    assert effect_pairs(received, 'Cassette') == [('IN_TRANSIT', 'IN_REPAIR')]
    body = get_order(client, headers, order['id'])
    assert body['status'] == 'RECEIVED'
    assert body['delivery']['received_by'] is not None


def test_scenario_e_reject_on_site(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id], repair_location='ON_SITE')
    assert order['repair_location'] == 'ON_SITE'
    no_reason = client.post(f'/tickets/{order["id"]}/reject-on-site', json={}, headers=headers)
    assert no_reason.status_code == 400
    resp = assert_transition(client, f'/tickets/{order["id"]}/reject-on-site', headers, 200,
                             expected_body_value='OPEN', payload={'reason': 'needs bench tools'})
    body = resp.get_json()
    assert body['repair_location'] == 'RC'
    assert body['on_site_rejection_reason'] == 'needs bench tools'
    # back on the regular flow: it can be requested again
    assert_transition(client, f'/tickets/{order["id"]}/request-on-site', headers, 200, expected_body_value='PENDING_APPROVAL')


def test_on_site_approval_flow(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id], repair_location='ON_SITE')
    ship = client.post('/tickets/delivery', json={'order_id': order['id']}, headers=headers)
    assert ship.status_code == 400
    early = client.post(f'/repairs/bulk-from-ticket/{order["id"]}', headers=headers)
    assert early.status_code == 400
    approved = assert_transition(client, f'/tickets/{order["id"]}/approve-on-site', headers, 200,
                                 expected_body_value='APPROVED_ON_SITE').get_json()
    assert approved['approved_by'] is not None
    repairs = start_repairs(client, headers, order['id'])
    assert len(repairs) == 1
    assert reload(Cassette, c.id).status == Cassette.STATUS_IN_REPAIR
    assert get_order(client, headers, order['id'])['status'] == 'IN_PROGRESS'


def test_approve_requires_pending_request(client):
    headers = rc_headers()
    order = open_order(client, headers, [ensure_cassette().id])
    resp = client.post(f'/tickets/{order["id"]}/approve-on-site', headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['type'] == 'InvalidTransition'


def test_scenario_f_cancel_resolved_order(client):
    headers = rc_headers()
    c = ensure_cassette()
    state = resolved_order(client, headers, [c.id])
    order_id = state['order']['id']
    assert reload(Cassette, c.id).status == Cassette.STATUS_READY_FOR_PICKUP
    resp = client.delete(f'/tickets/{order_id}', json={'reason': 'customer withdrew'}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['status'] == 'CANCELLED'
    assert body['cancel_reason'] == 'customer withdrew'
    assert effect_pairs(body, 'Cassette') == [('READY_FOR_PICKUP', 'OK')]
    assert reload(Cassette, c.id).status == Cassette.STATUS_OK
    pickup = client.post('/tickets/return', json={'order_id': order_id, 'recipient_name': 'A', 'signature': 'sig'}, headers=headers)
    assert pickup.status_code == 412
    assert get_db().query(CassetteReturn).filter_by(order_id=order_id).count() == 0
    # terminal
    assert client.delete(f'/tickets/{order_id}', headers=headers).status_code == 400


def test_cancel_keeps_scrapped_cassettes(client):
    headers = rc_headers()
    ok, bad = ensure_cassette(), ensure_cassette()
    state = resolved_order(client, headers, [ok.id, bad.id], qc_results=[True, False])
    resp = client.delete(f'/tickets/{state["order"]["id"]}?reason=dup', headers=headers)
    assert resp.status_code == 200
    assert reload(Cassette, ok.id).status == Cassette.STATUS_OK
    assert reload(Cassette, bad.id).status == Cassette.STATUS_SCRAPPED


def test_cassette_cannot_join_two_active_orders(client):
    headers = rc_headers()
    c = ensure_cassette()
    open_order(client, headers, [c.id])
    resp = client.post('/tickets', json={'title': 'again', 'cassettes': [{'cassette_id': c.id}]}, headers=headers)
    assert resp.status_code == 409
    assert reload(Cassette, c.id).status == Cassette.STATUS_BAD


def test_open_order_validation(client):
    headers = rc_headers()
    a = ensure_cassette(bank_id=1)
    b = ensure_cassette(bank_id=2)
    dup = client.post('/tickets', json={'title': 't', 'cassette_ids': [a.id, a.id]}, headers=headers)
    assert dup.status_code == 400
    banks = client.post('/tickets', json={'title': 't', 'cassette_ids': [a.id, b.id]}, headers=headers)
    assert banks.status_code == 400
    missing = client.post('/tickets', json={'title': 't', 'cassette_ids': [876543]}, headers=headers)
    assert missing.status_code == 404
    prio = client.post('/tickets', json={'title': 't', 'cassette_ids': [a.id], 'priority': 'URGENT'}, headers=headers)
    assert prio.status_code == 400
    scalar = client.post('/tickets', json={'title': 't', 'cassette_ids': a.id}, headers=headers)
    assert scalar.status_code == 400
    assert scalar.get_json()['error']['detail'] == 'cassette_ids must be a list'
    bad_line = client.post('/tickets', json={'title': 't', 'cassettes': [a.id]}, headers=headers)
    assert bad_line.status_code == 400
    # nothing was written
    assert reload(Cassette, a.id).status == Cassette.STATUS_OK


def test_open_order_rejects_cassette_in_repair(client):
    headers = rc_headers()
    c = ensure_cassette(status=Cassette.STATUS_IN_REPAIR)
    resp = client.post('/tickets', json={'title': 't', 'cassette_ids': [c.id]}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['type'] == 'IllegalCassetteTransition'


def test_open_order_too_many_cassettes(client, app_context):
    headers = rc_headers()
    limit = app_context.config['MAX_CASSETTES_PER_ORDER']
    resp = client.post('/tickets', json={'title': 't', 'cassette_ids': list(range(1, limit + 2))}, headers=headers)
    assert resp.status_code == 400


def test_advance_generic_entry_point(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id])
    oid = order['id']
    owned = client.post(f'/tickets/{oid}/advance', json={'status': 'IN_DELIVERY'}, headers=headers)
    assert owned.status_code == 412
    assert 'POST /tickets/delivery' in owned.get_json()['error']['detail']
    skip = client.post(f'/tickets/{oid}/advance', json={'status': 'IN_PROGRESS'}, headers=headers)
    assert skip.status_code == 400
    receive_order(client, headers, oid)
    started = assert_transition(client, f'/tickets/{oid}/advance', headers, 200, expected_body_value='IN_PROGRESS',
                                payload={'status': 'IN_PROGRESS'}).get_json()
    assert effect_pairs(started, 'ServiceOrder') == [('RECEIVED', 'IN_PROGRESS')]
    body = get_order(client, headers, oid)
    assert len(body['repairs']) == 1
    unresolved = client.post(f'/tickets/{oid}/advance', json={'status': 'RESOLVED'}, headers=headers)
    assert unresolved.status_code == 412
    cancelled = assert_transition(client, f'/tickets/{oid}/advance', headers, 200, expected_body_value='CANCELLED',
                                  payload={'status': 'CANCELLED', 'reason': 'wrong unit'}).get_json()
    assert effect_pairs(cancelled, 'Cassette') == [('IN_REPAIR', 'OK')]
    assert get_order(client, headers, oid)['repairs'] == []


def test_list_orders_filters(client):
    headers = rc_headers()
    bank = 5501
    a = ensure_cassette(bank_id=bank)
    b = ensure_cassette(bank_id=bank)
    open_order(client, headers, [a.id], priority='LOW')
    open_order(client, headers, [b.id], priority='CRITICAL', repair_location='ON_SITE')
    resp = client.get(f'/tickets?bank_id={bank}&sort=-priority', headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['pagination']['total'] == 2
    on_site = client.get(f'/tickets?bank_id={bank}&repair_location=ON_SITE', headers=headers).get_json()
    assert [o['priority'] for o in on_site['data']] == ['CRITICAL']
    page = client.get(f'/tickets?bank_id={bank}&limit=1&offset=1', headers=headers).get_json()
    assert page['pagination'] == {'total': 2, 'limit': 1, 'offset': 1, 'returned': 1}
    assert client.get('/tickets?status=LOST', headers=headers).status_code == 400


def test_get_order_etag(client):
    headers = rc_headers()
    order = open_order(client, headers, [ensure_cassette().id])
    resp = client.get(f'/tickets/{order["id"]}', headers=headers)
    assert resp.get_json()['effective_status'] == 'OPEN'
    cached = client.get(f'/tickets/{order["id"]}', headers={**headers, 'If-None-Match': resp.headers['ETag']})
    assert cached.status_code == 304


def test_cancelled_order_frees_cassette(client):
    headers = rc_headers()
    c = ensure_cassette()
    order = open_order(client, headers, [c.id])
    assert client.delete(f'/tickets/{order["id"]}', headers=headers).status_code == 200
    assert reload(Cassette, c.id).status == Cassette.STATUS_OK
    # the cassette may be reported again
    open_order(client, headers, [c.id])
    assert reload(ServiceOrder, order['id']).deleted_at is not None
