from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional


class ConnectedAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: str
    email_address: str
    display_name: Optional[str] = ''
    sync_paused: bool = False
    status: str = 'active'
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None


class CustomConnectIn(BaseModel):
    email: EmailStr
    imap_host: str = Field(min_length=1)
    smtp_host: str = Field(min_length=1)
    smtp_port: int = 587
    username: Optional[str] = None
    password: str = Field(min_length=1)


class DisconnectIn(BaseModel):
    email: EmailStr


class CheckoutIn(BaseModel):
    plan: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
