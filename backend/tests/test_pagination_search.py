from conftest import gmail_message, wait_for

MARKERS = ["p1", "p2", "p3", "p4", "p5"]


def _seed(client, headers, fake_mailbox):
    provider = fake_mailbox([gmail_message(m, f"{m}@example.com", subject=f"PAGETEST {m}") for m in MARKERS])
    r = client.post('/api/emails/connect/custom', headers=headers, json={
        "email": "pager@example.com", "imap_host": "imap.example.com", "smtp_host": "smtp.example.com",
        "password": "pw"})
    assert r.status_code == 200
    assert wait_for(lambda: provider.read == set(MARKERS))


def test_pagination_and_shape(client, app_user, fake_mailbox):
    _, headers = app_user()
    _seed(client, headers, fake_mailbox)

    r1 = client.get('/api/emails/inbound?limit=3&offset=0', headers=headers)
    assert r1.status_code == 200
    data1 = r1.json()
    for key in ["total", "count", "items", "limit", "offset"]:
        assert key in data1
    assert (data1['total'], data1['count'], data1['limit'], data1['offset']) == (5, 3, 3, 0)

    data2 = client.get('/api/emails/inbound?limit=3&offset=3', headers=headers).json()
    assert data2['count'] == 2
    first_page_ids = {e['id'] for e in data1['items']}
    assert not any(e['id'] in first_page_ids for e in data2['items'])

    sent = client.get('/api/emails/sent?limit=2', headers=headers).json()
    assert (sent['total'], sent['count']) == (5, 2)
    assert all(s['subject'].startswith("Re: PAGETEST") for s in sent['items'])


def test_page_bounds_are_validated(client, app_user):
    _, headers = app_user()
    r = client.get('/api/emails/inbound?limit=0', headers=headers)
    assert r.status_code == 400
    assert r.json()['error'] == 'Invalid request'
    assert client.get('/api/emails/sent?offset=-1', headers=headers).status_code == 400
