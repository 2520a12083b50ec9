from conftest import gmail_message, wait_for

CUSTOM = {"email": "me@example.com", "imap_host": "imap.example.com", "smtp_host": "smtp.example.com",
          "smtp_port": 465, "password": "pw"}


def test_health(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json()['status'] == 'ok'
    assert r.json()['mailboxes'] == 0


def test_connected_mailbox_gets_auto_replies(client, app_user, fake_mailbox):
    user, headers = app_user()
    provider = fake_mailbox([gmail_message("c1", "Alice <alice@example.com>", subject="Meeting", body="Are we still on?")])
    r = client.post('/api/emails/connect/custom', json=CUSTOM, headers=headers)
    assert r.status_code == 200
    account = r.json()
    assert account['email_address'] == 'me@example.com'
    assert account['provider'] == 'custom'

    assert wait_for(lambda: "c1" in provider.read)
    assert provider.sent[0].subject == "Re: Meeting"

    listed = client.get('/api/emails/connected', headers=headers).json()
    assert [a['id'] for a in listed] == [account['id']]

    inbound = client.get('/api/emails/inbound', headers=headers).json()
    assert inbound['total'] == 1
    item = inbound['items'][0]
    assert item['processing_status'] == 'processed'
    assert item['from_email'] == 'alice@example.com'

    detail = client.get(f"/api/emails/inbound/{item['id']}", headers=headers).json()
    assert detail['body_text'] == "Are we still on?"
    assert [e['status'] for e in detail['processing_log']] == ['pending', 'processing', 'processed']

    mood = client.get(f"/api/emails/inbound/{item['id']}/sentiment", headers=headers).json()
    assert mood['id'] == item['id']
    assert mood['sentiment'] in ('positive', 'neutral', 'negative')

    sent = client.get('/api/emails/sent', headers=headers).json()
    assert sent['total'] == 1
    assert sent['items'][0]['to'][0]['email'] == 'alice@example.com'

    status = client.get('/api/emails/poller/status', headers=headers).json()
    assert status['active'][0]['mailbox'] == 'me@example.com'


def test_pause_resume_run_once_and_disconnect(client, app_user, fake_mailbox):
    user, headers = app_user()
    fake_mailbox()
    account_id = client.post('/api/emails/connect/custom', json=CUSTOM, headers=headers).json()['id']

    r = client.post(f'/api/emails/connected/{account_id}/pause', headers=headers)
    assert r.status_code == 200 and r.json()['sync_paused'] is True
    r = client.post(f'/api/emails/connected/{account_id}/pause', headers=headers)
    assert r.status_code == 409
    assert r.json() == {"error": "Sync is already paused"}
    assert client.post(f'/api/emails/connected/{account_id}/run-once', headers=headers).json()['paused'] is True

    r = client.post(f'/api/emails/connected/{account_id}/resume', headers=headers)
    assert r.status_code == 200 and r.json()['status'] == 'active'
    tick = client.post(f'/api/emails/connected/{account_id}/run-once', headers=headers).json()
    assert tick['fetched'] == 0 and 'paused' not in tick

    r = client.post('/api/emails/disconnect', json={"email": "ME@example.com"}, headers=headers)
    assert r.status_code == 200
    assert r.json()['removed'] == 1
    assert client.get('/api/emails/connected', headers=headers).json() == []
    assert client.post(f'/api/emails/connected/{account_id}/run-once', headers=headers).status_code == 404
    assert client.post('/api/emails/disconnect', json={"email": "me@example.com"}, headers=headers).status_code == 404


def test_disconnect_keeps_another_users_worker_on_the_same_address(client, app_user, fake_mailbox):
    _, owner = app_user()
    _, other = app_user()
    fake_mailbox()
    client.post('/api/emails/connect/custom', json=CUSTOM, headers=owner)
    other_id = client.post('/api/emails/connect/custom', json=CUSTOM, headers=other).json()['id']

    assert client.post('/api/emails/disconnect', json={"email": "me@example.com"}, headers=owner).status_code == 200
    active = client.app.state.poller.status()['active']
    assert [h['alive'] for h in active if h['account_id'] == other_id] == [True]
    assert [a['id'] for a in client.get('/api/emails/connected', headers=other).json()] == [other_id]
    client.post('/api/emails/disconnect', json={"email": "me@example.com"}, headers=other)


def test_accounts_are_private_to_their_owner(client, app_user, fake_mailbox):
    _, owner = app_user()
    _, other = app_user()
    fake_mailbox()
    account_id = client.post('/api/emails/connect/custom', json=CUSTOM, headers=owner).json()['id']
    assert client.post(f'/api/emails/connected/{account_id}/pause', headers=other).status_code == 404
    assert client.get('/api/emails/connected', headers=other).json() == []


def test_plan_gates_new_connections(client, app_user, fake_mailbox):
    fake_mailbox()
    _, free = app_user(plan='free')
    r = client.post('/api/emails/connect/custom', json=CUSTOM, headers=free)
    assert r.status_code == 403
    assert r.json() == {"error": "subscription_required"}

    _, pro = app_user(plan='pro_monthly')
    for address in ("a@example.com", "b@example.com"):
        assert client.post('/api/emails/connect/custom', json={**CUSTOM, "email": address}, headers=pro).status_code == 200
    # refreshing credentials of a linked mailbox is not a new connection
    assert client.post('/api/emails/connect/custom', json={**CUSTOM, "email": "a@example.com"}, headers=pro).status_code == 200
    r = client.post('/api/emails/connect/custom', json={**CUSTOM, "email": "c@example.com"}, headers=pro)
    assert r.status_code == 403
    assert r.json() == {"error": "account_limit_reached"}


def test_invalid_connect_payload(client, app_user):
    _, headers = app_user()
    r = client.post('/api/emails/connect/custom', json={**CUSTOM, "email": "not-an-address"}, headers=headers)
    assert r.status_code == 400
    assert r.json()['error'] == 'Invalid request'
