from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from ..db.database import Base
from datetime import datetime, timezone

PROVIDERS = ('google', 'outlook', 'custom')


class ConnectedAccount(Base):
    __tablename__ = 'connected_accounts'
    __table_args__ = (UniqueConstraint('user_id', 'email_address', 'provider', name='uq_account_user_address_provider'),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    provider = Column(String, nullable=False, index=True)
    email_address = Column(String, nullable=False, index=True)
    display_name = Column(String, default='')
    # OAuth providers
    access_token = Column(String, nullable=True)
    refresh_token = Column(String, nullable=True)
    token_expiry = Column(DateTime, nullable=True)
    # custom IMAP/SMTP provider
    imap_host = Column(String, nullable=True)
    smtp_host = Column(String, nullable=True)
    smtp_port = Column(Integer, nullable=True)
    username = Column(String, nullable=True)
    password = Column(String, nullable=True)

    sync_paused = Column(Boolean, default=False, nullable=False)
    status = Column(String, default='active', index=True)  # active | paused | error
    last_sync_at = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        """Poller handle key; stable for the lifetime of the row."""
        return f"{self.provider}:{self.user_id}:{self.email_address.lower()}"
