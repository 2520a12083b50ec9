from backend.replai.services.analytics import analytics_summary, usage_summary, can_send, can_connect
from backend.replai.services.mailbox_poller import MailboxPoller
from backend.replai.services.reply_composer import ReplyComposer
from backend.replai.services.block_list import add_entry
from conftest import gmail_message, FakeProvider, FakeGenerator, make_user, make_account


def test_usage_per_plan(client, app_user):
    _, pro = app_user(plan='pro_monthly')
    data = client.get('/api/user/usage', headers=pro).json()
    assert data == {"plan": "pro_monthly",
                    "emails": {"used": 0, "total": 1000, "percentage": 0},
                    "accounts": {"used": 0, "total": 2, "percentage": 0}}

    _, business = app_user(plan='business')
    data = client.get('/api/user/usage', headers=business).json()
    assert data['emails'] == {"used": 0, "total": "Unlimited", "percentage": 0}
    assert data['accounts']['total'] == "Unlimited"

    _, free = app_user(plan='free')
    data = client.get('/api/user/usage', headers=free).json()
    assert data['emails'] == {"used": 0, "total": 0, "percentage": 0}


def test_usage_counts_sends_and_accounts(db):
    user = make_user(db, plan='pro_yearly', sent=250)
    make_account(db, user)
    data = usage_summary(db, user)
    assert data['emails'] == {"used": 250, "total": 1000, "percentage": 25.0}
    assert data['accounts'] == {"used": 1, "total": 2, "percentage": 50.0}
    assert can_send(user) and can_connect(db, user)
    make_account(db, user)
    assert not can_connect(db, user)

    free = make_user(db, plan='free', sent=3)
    assert usage_summary(db, free)['emails']['percentage'] == 100
    assert not can_send(free)


def test_analytics_summary_after_a_tick(session_factory, db):
    user = make_user(db)
    account = make_account(db, user)
    add_entry(db, user.id, "spam.com")
    provider = FakeProvider([
        gmail_message("a1", "alice@example.com", body="Thanks, great work"),
        gmail_message("a2", "news@updates.io", body="Latest"),
        gmail_message("a3", "x@spam.com"),
    ], fail_send_for={"a2"})
    poller = MailboxPoller(session_factory=session_factory, provider_factory=lambda a: provider,
                           composer=ReplyComposer(FakeGenerator()), interval=60, publish=lambda e, d: None)
    poller.run_once(account.id)

    db.expire_all()
    data = analytics_summary(db, user.id)
    assert data['total'] == 3 and data['last_24h'] == 3
    assert (data['processed'], data['failed'], data['skipped'], data['pending']) == (1, 1, 1, 0)
    assert data['category']['updates'] == 1
    assert data['sentiment']['positive'] == 1
    assert data['replies_sent'] == 1
    assert data['avg_response_time_ms'] is not None


def test_analytics_endpoints(client, app_user):
    _, headers = app_user()
    data = client.get('/api/analytics/summary', headers=headers).json()
    assert data['total'] == 0 and data['avg_response_time_ms'] is None
    ai = client.get('/api/analytics/ai', headers=headers).json()
    assert {'provider', 'model', 'has_key', 'last_error'} <= set(ai)
