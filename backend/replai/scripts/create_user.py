"""Operator CLI: create (or look up) a user and print a bearer token for it.

Usage:
  python -m backend.replai.scripts.create_user -e owner@example.com -n "Owner" --plan pro_monthly

An existing user with the same email keeps its row; --plan updates the plan.
"""
import argparse

from ..db.database import SessionLocal, init_db
from ..models.user_model import User, PLANS
from ..security.auth import create_access_token


def create_or_update_user(session, email: str, name: str = '', plan=None) -> User:
    email = email.strip().lower()
    user = session.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email, name=name or email.split('@')[0], subscription_plan=plan or 'free')
        session.add(user)
    else:
        if name:
            user.name = name
        if plan:
            user.subscription_plan = plan
    session.commit()
    session.refresh(user)
    return user


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a user and mint an API bearer token")
    parser.add_argument("-e", "--email", required=True, help="User email address")
    parser.add_argument("-n", "--name", default="", help="Display name used in reply signatures")
    parser.add_argument("--plan", choices=PLANS, default=None, help="Subscription plan")
    parser.add_argument("--expires-minutes", type=int, default=None, help="Token lifetime (defaults to JWT_EXPIRES_MINUTES)")
    args = parser.parse_args(argv)

    init_db()
    session = SessionLocal()
    try:
        user = create_or_update_user(session, args.email, args.name, args.plan)
        print(f"user_id: {user.id}")
        print(f"plan: {user.subscription_plan}")
        print(f"token: {create_access_token(user.id, args.expires_minutes)}")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover
    main()
