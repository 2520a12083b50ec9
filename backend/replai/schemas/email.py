from datetime import datetime
from pydantic import BaseModel, ConfigDict
from typing import Optional, List, Dict, Any


class Address(BaseModel):
    name: str = ''
    email: str = ''


class InboundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: Optional[int]
    provider_message_id: str
    thread_id: Optional[str] = None
    subject: str
    snippet: Optional[str] = ''
    from_name: Optional[str] = ''
    from_email: Optional[str] = None
    to: List[Address] = []
    received_at: Optional[datetime] = None
    category: Optional[str] = None
    sentiment: Optional[str] = None
    is_urgent: bool = False
    is_bulk: bool = False
    priority: int = 3
    processed: bool = False
    processing_status: str = 'pending'


class InboundDetail(InboundOut):
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    processing_log: List[Dict[str, Any]] = []


class SentReplyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: Optional[int]
    from_address: str
    to: List[Address] = []
    subject: str
    body: str
    thread_id: Optional[str] = None
    reply_to_message_id: Optional[str] = None
    response_time_ms: Optional[int] = None
    category: Optional[str] = None
    sentiment: Optional[str] = None
    sent_at: Optional[datetime] = None


class BlockEntryIn(BaseModel):
    entry: str


class PromptIn(BaseModel):
    text: str = ''
    file_data: Optional[str] = None


class PromptOut(BaseModel):
    text: str = ''
    file_data: Optional[str] = None
    using_default: bool = True
