from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, ForeignKey, UniqueConstraint
from ..db.database import Base
from datetime import datetime, timezone


class InboundMessage(Base):
    __tablename__ = 'inbound_messages'
    # rows are partitioned per connected account; one row per provider message
    __table_args__ = (UniqueConstraint('account_id', 'provider_message_id', name='uq_inbound_account_message'),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True)
    account_id = Column(Integer, ForeignKey('connected_accounts.id', ondelete='SET NULL'), index=True, nullable=True)
    provider_message_id = Column(String, nullable=False, index=True)
    thread_id = Column(String, index=True)
    subject = Column(String, default='(No Subject)')
    snippet = Column(String, default='')
    body_text = Column(Text)
    body_html = Column(Text, nullable=True)
    from_name = Column(String, default='')
    from_email = Column(String, index=True)
    to = Column(JSON, default=list)
    received_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    category = Column(String, index=True)
    sentiment = Column(String, index=True)
    is_urgent = Column(Boolean, default=False)
    is_bulk = Column(Boolean, default=False)
    priority = Column(Integer, default=3)
    processed = Column(Boolean, default=False, index=True)
    processing_status = Column(String, default='pending', index=True)  # pending|processing|processed|failed|skipped
    processing_log = Column(JSON, default=list)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class SentReply(Base):
    __tablename__ = 'sent_replies'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True)
    account_id = Column(Integer, ForeignKey('connected_accounts.id', ondelete='SET NULL'), index=True, nullable=True)
    from_address = Column(String)
    to = Column(JSON, default=list)
    subject = Column(String)
    body = Column(Text)
    thread_id = Column(String, nullable=True)
    provider_message_id = Column(String, nullable=True)
    reply_to_message_id = Column(String, index=True)
    response_time_ms = Column(Integer)
    category = Column(String, index=True)
    sentiment = Column(String, index=True)
    auto_generated = Column(Boolean, default=True)
    is_reply = Column(Boolean, default=True)
    sent_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
