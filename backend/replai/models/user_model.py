from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from ..db.database import Base
from datetime import datetime, timezone

PLANS = ('free', 'pro_monthly', 'pro_yearly', 'business')
PAID_PLANS = ('pro_monthly', 'pro_yearly', 'business')


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, default='')
    email = Column(String, unique=True, index=True, nullable=False)
    subscription_plan = Column(String, default='free', index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    subscription_started_at = Column(DateTime, nullable=True)
    emails_sent_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class PromptSetting(Base):
    """Saved custom reply instructions; replaces the default prompt when present."""
    __tablename__ = 'prompt_settings'
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), unique=True, index=True)
    text = Column(Text, nullable=False, default='')
    # text extracted from an uploaded reference document, appended to `text`
    file_data = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def instructions(self) -> str:
        return (self.text or '') + (self.file_data or '')


class BlockListEntry(Base):
    __tablename__ = 'block_list_entries'
    __table_args__ = (UniqueConstraint('user_id', 'entry', name='uq_block_list_user_entry'),)
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True)
    # lowercased email address or bare domain
    entry = Column(String, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
