from datetime import date, timedelta
from cassette_rc.models.cassette import Cassette
from tests.test_utils_seed import ensure_cassette, reload
from tests.test_lifecycle_helpers import (
    rc_headers, jwt_headers, assert_transition, create_resource_and_assert, open_order, effect_pairs,
)

FUTURE = (date.today() + timedelta(days=10)).isoformat()


def schedule_pm(client, headers, cassette_ids, pm_type='ROUTINE', **extra):
    payload = {'cassette_ids': cassette_ids, 'scheduled_date': FUTURE, 'pm_type': pm_type, **extra}
    return create_resource_and_assert(client, '/preventive-maintenance', payload, headers, expected_initial_status='SCHEDULED')


def finish_details(client, headers, pm):
    for d in pm['details']:
        resp = client.patch(f"/preventive-maintenance/{pm['id']}/cassettes/{d['cassette_id']}",
                            json={'status': 'COMPLETED', 'checklist': {'rollers': 'ok'}}, headers=headers)
        assert resp.status_code == 200, resp.get_json()


def test_scenario_d_simultaneous_pm_conflict(client):
    headers = rc_headers()
    c = ensure_cassette()
    pm = schedule_pm(client, headers, [c.id])
    assert pm['pm_number'].startswith('PM-')
    assert pm['auto_schedule'] is True
    assert pm['interval_days'] == 90
    resp = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': FUTURE,
                                                        'pm_type': 'ON_DEMAND_RC'}, headers=headers)
    assert resp.status_code == 409
    assert 'cannot create simultaneous PM' in resp.get_json()['error']['detail']


def test_schedule_rejects_cassette_away_for_repair(client):
    headers = rc_headers()
    c = ensure_cassette(status=Cassette.STATUS_IN_REPAIR)
    resp = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': FUTURE}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error']['type'] == 'IllegalCassetteTransition'


def test_schedule_rejects_cassette_on_active_order(client):
    headers = rc_headers()
    c = ensure_cassette()
    open_order(client, headers, [c.id])
    resp = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': FUTURE}, headers=headers)
    assert resp.status_code == 409


def test_pm_blocks_new_service_order(client):
    headers = rc_headers()
    c = ensure_cassette()
    schedule_pm(client, headers, [c.id])
    resp = client.post('/tickets', json={'title': 't', 'cassette_ids': [c.id]}, headers=headers)
    assert resp.status_code == 409


def test_schedule_validation(client):
    headers = rc_headers()
    c = ensure_cassette()
    bad_type = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': FUTURE, 'pm_type': 'WEEKLY'}, headers=headers)
    assert bad_type.status_code == 400
    bad_date = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': 'soon'}, headers=headers)
    assert bad_date.status_code == 400
    auto_on_demand = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': FUTURE,
                                                                  'pm_type': 'EMERGENCY', 'auto_schedule': True}, headers=headers)
    assert auto_on_demand.status_code == 400


def test_pm_lifecycle_to_completion(client):
    headers = rc_headers()
    a, b = ensure_cassette(), ensure_cassette()
    pm = schedule_pm(client, headers, [a.id, b.id], interval_days=30)
    pid = pm['id']
    started = assert_transition(client, f'/preventive-maintenance/{pid}', headers, 200, expected_body_value='IN_PROGRESS',
                                payload={'status': 'IN_PROGRESS'}, method='patch').get_json()
    assert started['started_at'] is not None
    assert started['assigned_engineer'] is not None
    early = client.patch(f'/preventive-maintenance/{pid}', json={'status': 'COMPLETED'}, headers=headers)
    assert early.status_code == 412
    finish_details(client, headers, pm)
    done = assert_transition(client, f'/preventive-maintenance/{pid}', headers, 200, expected_body_value='COMPLETED',
                             payload={'status': 'COMPLETED'}, method='patch').get_json()
    assert done['completed_at'] is not None
    assert done['next_pm_date'] == (date.today() + timedelta(days=30)).isoformat()
    assert done['details'][0]['checklist'] == {'rollers': 'ok'}
    # terminal
    again = client.patch(f'/preventive-maintenance/{pid}', json={'status': 'IN_PROGRESS'}, headers=headers)
    assert again.status_code == 400
    # cassettes are free for new work once the PM is complete
    assert reload(Cassette, a.id).status == Cassette.STATUS_OK
    open_order(client, headers, [a.id])


def test_found_fault_marks_cassette_bad(client):
    headers = rc_headers()
    c = ensure_cassette()
    pm = schedule_pm(client, headers, [c.id], pm_type='ON_DEMAND_PENGELOLA')
    assert pm['auto_schedule'] is False
    resp = client.patch(f"/preventive-maintenance/{pm['id']}/cassettes/{c.id}",
                        json={'status': 'COMPLETED', 'found_fault': True, 'findings': 'bent shutter'}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert effect_pairs(resp.get_json(), 'Cassette') == [('OK', 'BAD')]
    assert reload(Cassette, c.id).status == Cassette.STATUS_BAD
    back = client.patch(f"/preventive-maintenance/{pm['id']}/cassettes/{c.id}", json={'status': 'PENDING'}, headers=headers)
    assert back.status_code == 400
    missing = client.patch(f"/preventive-maintenance/{pm['id']}/cassettes/999999", json={'findings': 'x'}, headers=headers)
    assert missing.status_code == 404


def test_reschedule_requires_future_date(client):
    headers = rc_headers()
    pm = schedule_pm(client, headers, [ensure_cassette().id])
    url = f"/preventive-maintenance/{pm['id']}"
    past = client.patch(url, json={'status': 'RESCHEDULED', 'scheduled_date': '2020-01-01'}, headers=headers)
    assert past.status_code == 400
    no_date = client.patch(url, json={'status': 'RESCHEDULED'}, headers=headers)
    assert no_date.status_code == 400
    later = (date.today() + timedelta(days=40)).isoformat()
    resp = client.patch(url, json={'status': 'RESCHEDULED', 'scheduled_date': later}, headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'RESCHEDULED'
    assert body['scheduled_date'] == later
    assert 'Rescheduled from' in body['notes']
    # a rescheduled task still blocks a second PM
    dup = client.post('/preventive-maintenance', json={'cassette_ids': [pm['details'][0]['cassette_id']],
                                                       'scheduled_date': FUTURE}, headers=headers)
    assert dup.status_code == 409


def test_cancel_requires_reason_and_stops_auto_schedule(client):
    headers = rc_headers()
    pm = schedule_pm(client, headers, [ensure_cassette().id])
    no_reason = client.post(f"/preventive-maintenance/{pm['id']}/cancel", json={}, headers=headers)
    assert no_reason.status_code == 400
    resp = assert_transition(client, f"/preventive-maintenance/{pm['id']}/cancel", headers, 200,
                             expected_body_value='CANCELLED', payload={'reason': 'machine decommissioned'})
    body = resp.get_json()
    assert body['auto_schedule'] is False
    assert body['cancel_reason'] == 'machine decommissioned'
    assert client.post(f"/preventive-maintenance/{pm['id']}/cancel", json={'reason': 'again'}, headers=headers).status_code == 400


def test_disable_auto_schedule(client):
    headers = rc_headers()
    routine = schedule_pm(client, headers, [ensure_cassette().id])
    resp = client.post(f"/preventive-maintenance/{routine['id']}/disable-auto-schedule", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['auto_schedule'] is False
    emergency = schedule_pm(client, headers, [ensure_cassette().id], pm_type='EMERGENCY')
    resp = client.post(f"/preventive-maintenance/{emergency['id']}/disable-auto-schedule", headers=headers)
    assert resp.status_code == 400


def test_take_conflict(client):
    first, second = rc_headers(301), rc_headers(302)
    pm = schedule_pm(client, first, [ensure_cassette().id])
    taken = client.post(f"/preventive-maintenance/{pm['id']}/take", headers=first)
    assert taken.get_json()['assigned_engineer'] == 301
    assert client.post(f"/preventive-maintenance/{pm['id']}/take", headers=second).status_code == 409


def test_delete_rules(client):
    rc = rc_headers()
    deleter = jwt_headers(400, ['PM.READ', 'PM.DELETE'])
    scheduled = schedule_pm(client, rc, [ensure_cassette().id])
    resp = client.delete(f"/preventive-maintenance/{scheduled['id']}", headers=deleter)
    assert resp.status_code == 200
    assert client.get(f"/preventive-maintenance/{scheduled['id']}", headers=rc).status_code == 404
    started = schedule_pm(client, rc, [ensure_cassette().id])
    client.patch(f"/preventive-maintenance/{started['id']}", json={'status': 'IN_PROGRESS'}, headers=rc)
    forbidden = client.delete(f"/preventive-maintenance/{started['id']}", headers=deleter)
    assert forbidden.status_code == 403
    assert forbidden.get_json()['error']['type'] == 'Forbidden'
    admin = jwt_headers(401, ['PM.READ', 'PM.DELETE', 'PM.DELETE_ANY'])
    assert client.delete(f"/preventive-maintenance/{started['id']}", headers=admin).status_code == 200


def test_list_pms(client):
    headers = rc_headers()
    bank = 6601
    schedule_pm(client, headers, [ensure_cassette(bank_id=bank).id])
    schedule_pm(client, headers, [ensure_cassette(bank_id=bank).id], pm_type='EMERGENCY')
    body = client.get(f'/preventive-maintenance?bank_id={bank}&pm_type=EMERGENCY', headers=headers).get_json()
    assert body['pagination']['total'] == 1
    assert body['data'][0]['pm_type'] == 'EMERGENCY'
