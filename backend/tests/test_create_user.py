from backend.replai.scripts.create_user import create_or_update_user, main
from backend.replai.security.auth import decode_access_token


def test_create_then_update(db):
    user = create_or_update_user(db, " Owner@Example.com ", plan="business")
    assert (user.email, user.name, user.subscription_plan) == ("owner@example.com", "owner", "business")
    again = create_or_update_user(db, "owner@example.com", name="Owner", plan=None)
    assert again.id == user.id
    assert (again.name, again.subscription_plan) == ("Owner", "business")


def test_cli_prints_a_usable_token(capsys):
    main(["-e", "cli-user@example.com", "-n", "Cli", "--plan", "pro_monthly"])
    out = dict(line.split(": ", 1) for line in capsys.readouterr().out.strip().splitlines())
    assert out["plan"] == "pro_monthly"
    assert decode_access_token(out["token"]) == int(out["user_id"])
