from sqlalchemy import update
from cassette_rc import get_db
from cassette_rc.models.cassette import Cassette
from tests.test_utils_seed import ensure_cassette
from tests.test_lifecycle_helpers import rc_headers, open_order, order_in_repair

BANK = 7301


def _seed_bank():
    for serial in ('LST-CHARLIE', 'LST-ALPHA', 'LST-BRAVO'):
        ensure_cassette(serial=serial, bank_id=BANK)


def test_cassette_list_etag_and_last_modified(client):
    headers = rc_headers()
    _seed_bank()
    first = client.get(f'/cassettes?bank_id={BANK}&limit=5', headers=headers)
    assert first.status_code == 200
    etag = first.headers.get('ETag')
    assert etag
    second = client.get(f'/cassettes?bank_id={BANK}&limit=5', headers={**headers, 'If-None-Match': etag})
    assert second.status_code == 304
    assert second.headers.get('ETag') == etag
    lm = first.headers.get('Last-Modified')
    assert lm
    third = client.get(f'/cassettes?bank_id={BANK}&limit=5', headers={**headers, 'If-Modified-Since': lm})
    assert third.status_code == 304
    # a different page is a different representation
    other = client.get(f'/cassettes?bank_id={BANK}&limit=2', headers={**headers, 'If-None-Match': etag})
    assert other.status_code == 200


def test_single_resource_validators(client):
    headers = rc_headers()
    c = ensure_cassette()
    first = client.get(f'/cassettes/{c.id}', headers=headers)
    assert first.status_code == 200
    again = client.get(f'/cassettes/{c.id}', headers={**headers, 'If-None-Match': first.headers['ETag']})
    assert again.status_code == 304
    order = open_order(client, headers, [c.id])
    resp = client.get(f"/tickets/{order['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.headers.get('ETag')
    assert resp.get_json()['effective_status'] == 'OPEN'


def test_pagination_meta(client):
    headers = rc_headers()
    _seed_bank()
    body = client.get(f'/cassettes?bank_id={BANK}&limit=2&offset=1', headers=headers).get_json()
    assert body['pagination'] == {'total': 3, 'limit': 2, 'offset': 1, 'returned': 2}
    clamped = client.get(f'/cassettes?bank_id={BANK}&limit=5000', headers=headers).get_json()
    assert clamped['pagination']['limit'] == 200
    assert client.get('/cassettes?limit=abc', headers=headers).status_code == 400


def test_multi_sort_and_filters(client):
    headers = rc_headers()
    _seed_bank()
    resp = client.get(f'/cassettes?bank_id={BANK}&sort=status,-serial_number', headers=headers)
    assert resp.status_code == 200
    serials = [c['serial_number'] for c in resp.get_json()['data']]
    assert serials == ['LST-CHARLIE', 'LST-BRAVO', 'LST-ALPHA']
    by_serial = client.get(f'/cassettes?bank_id={BANK}&serial=alpha', headers=headers).get_json()['data']
    assert [c['serial_number'] for c in by_serial] == ['LST-ALPHA']
    assert client.get('/cassettes?sort=-colour', headers=headers).status_code == 400
    assert client.get('/cassettes?status=BROKEN', headers=headers).status_code == 400
    assert client.get('/tickets?bank_id=abc', headers=headers).status_code == 400


def test_order_validator_follows_repair_tickets(client):
    headers = rc_headers()
    state = order_in_repair(client, headers, [ensure_cassette().id])
    oid = state['order']['id']
    first = client.get(f'/tickets/{oid}', headers=headers)
    assert first.get_json()['repairs'][0]['status'] == 'RECEIVED'
    client.post(f"/repairs/{state['repairs'][0]['id']}/take", headers=headers)
    again = client.get(f'/tickets/{oid}', headers={**headers, 'If-None-Match': first.headers['ETag']})
    assert again.status_code == 200
    assert again.get_json()['repairs'][0]['status'] == 'DIAGNOSING'
    assert again.headers['ETag'] != first.headers['ETag']


def test_pm_validator_follows_detail_rows(client):
    headers = rc_headers()
    c = ensure_cassette()
    pm = client.post('/preventive-maintenance', json={'cassette_ids': [c.id], 'scheduled_date': '2099-01-01'},
                     headers=headers).get_json()
    url = f"/preventive-maintenance/{pm['id']}"
    first = client.get(url, headers=headers)
    resp = client.patch(f'{url}/cassettes/{c.id}', json={'findings': 'dust on rollers'}, headers=headers)
    assert resp.status_code == 200
    again = client.get(url, headers={**headers, 'If-None-Match': first.headers['ETag']})
    assert again.status_code == 200
    assert again.get_json()['details'][0]['findings'] == 'dust on rollers'


def test_each_request_reads_fresh_rows(app_instance):
    # no surrounding app context: every request gets its own, as under a real server
    with app_instance.app_context():
        cid = ensure_cassette(bank_id=7302).id
        headers = rc_headers()
    client = app_instance.test_client()
    first = client.get('/cassettes?bank_id=7302', headers=headers)
    assert [c['status'] for c in first.get_json()['data']] == ['OK']
    with app_instance.app_context():
        # another worker changes the row behind this process's back
        with get_db().get_bind().begin() as conn:
            conn.execute(update(Cassette).where(Cassette.id == cid).values(status=Cassette.STATUS_BAD))
    second = client.get('/cassettes?bank_id=7302', headers=headers)
    assert [c['status'] for c in second.get_json()['data']] == ['BAD']
    availability = client.get(f'/cassettes/{cid}/availability', headers=headers).get_json()
    assert availability['status'] == 'BAD'
    assert availability['available'] is False
