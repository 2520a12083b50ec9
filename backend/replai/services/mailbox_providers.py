"""Mailbox provider implementations.

One class per provider behind the ``MailboxProvider`` capability interface
(list unread ids, fetch one message, send a reply, mark read). Every
provider returns messages in the Gmail payload shape consumed by
``email_parser.extract_message``.

Providers (``ConnectedAccount.provider``):
  - google: Gmail REST API via google-api-python-client
  - outlook: placeholder; Microsoft Graph is not wired up yet
  - custom: any IMAP/SMTP server with username/password login
"""
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
import email
from email.message import EmailMessage
import imaplib
import logging
import smtplib

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..core.config import get_settings
from ..core.errors import ProviderError, ValidationError
from .email_parser import payload_from_rfc822
from .reply_composer import ComposedReply

GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'
GMAIL_UNREAD_QUERY = 'is:unread -in:chats -from:me'
IMAP_TIMEOUT = 30.0


class MailboxProvider:
    name = 'base'

    def __init__(self, account):
        self.account = account
        self.address = account.email_address
        self.log = logging.getLogger(__name__)

    def list_unread(self, limit: int) -> List[str]:
        raise NotImplementedError

    def get_message(self, message_id: str) -> Dict:
        raise NotImplementedError

    def send(self, reply: ComposedReply) -> Optional[str]:
        """Send the composed reply; returns the provider's id for the sent message."""
        raise NotImplementedError

    def mark_read(self, message_id: str) -> None:
        raise NotImplementedError

    def token_state(self) -> Optional[Dict]:
        """Current OAuth token fields when they changed during use, else None."""
        return None

    def close(self) -> None:
        pass


class GmailProvider(MailboxProvider):
    name = 'google'

    def __init__(self, account, service=None):
        super().__init__(account)
        self.credentials = google_credentials(account)
        self._initial_token = account.access_token
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = build('gmail', 'v1', credentials=self.credentials, cache_discovery=False)
        return self._service

    def _call(self, op: str, request):
        try:
            return request.execute()
        except HttpError as e:
            status = getattr(e, 'status_code', None) or getattr(e.resp, 'status', None)
            raise ProviderError(f'Gmail {op} failed ({status})', provider=self.name, status=status) from e

    def list_unread(self, limit: int) -> List[str]:
        resp = self._call('list', self.service.users().messages().list(
            userId='me', q=GMAIL_UNREAD_QUERY, maxResults=limit))
        return [m['id'] for m in resp.get('messages', [])]

    def get_message(self, message_id: str) -> Dict:
        return self._call('get', self.service.users().messages().get(userId='me', id=message_id, format='full'))

    def send(self, reply: ComposedReply) -> Optional[str]:
        body = {'raw': reply.encoded}
        if reply.thread_id:
            body['threadId'] = reply.thread_id
        sent = self._call('send', self.service.users().messages().send(userId='me', body=body))
        return sent.get('id')

    def mark_read(self, message_id: str) -> None:
        self._call('modify', self.service.users().messages().modify(
            userId='me', id=message_id, body={'removeLabelIds': ['UNREAD']}))

    def token_state(self) -> Optional[Dict]:
        return refreshed_tokens(self.credentials, self._initial_token)


class OutlookProvider(MailboxProvider):
    name = 'outlook'

    def _unsupported(self, *args, **kwargs):
        raise ProviderError('Outlook mailboxes are not supported yet', provider=self.name)

    list_unread = get_message = send = mark_read = _unsupported


class CustomImapProvider(MailboxProvider):
    """Generic IMAP (read) + SMTP (send) mailbox; message ids are IMAP UIDs."""
    name = 'custom'

    def __init__(self, account, imap_factory=None, smtp_factory=None):
        super().__init__(account)
        if not (account.imap_host and account.smtp_host and account.password):
            raise ValidationError('IMAP host, SMTP host and password are required', mailbox=self.address)
        self.username = account.username or account.email_address
        self._imap_factory = imap_factory or (lambda host: imaplib.IMAP4_SSL(host, timeout=IMAP_TIMEOUT))
        self._smtp_factory = smtp_factory or self._default_smtp
        self._imap = None

    def _default_smtp(self, host: str, port: int):
        if port == 465:
            return smtplib.SMTP_SSL(host, port, timeout=IMAP_TIMEOUT)
        client = smtplib.SMTP(host, port, timeout=IMAP_TIMEOUT)
        client.starttls()
        return client

    @property
    def imap(self):
        if self._imap is None:
            try:
                conn = self._imap_factory(self.account.imap_host)
                conn.login(self.username, self.account.password)
                conn.select('INBOX')
            except (imaplib.IMAP4.error, OSError) as e:
                raise ProviderError(f'IMAP login failed: {e}', provider=self.name) from e
            self._imap = conn
        return self._imap

    def _uid(self, *args):
        try:
            status, data = self.imap.uid(*args)
        except (imaplib.IMAP4.error, OSError) as e:
            raise ProviderError(f'IMAP {args[0]} failed: {e}', provider=self.name) from e
        if status != 'OK':
            raise ProviderError(f'IMAP {args[0]} returned {status}', provider=self.name)
        return data

    def list_unread(self, limit: int) -> List[str]:
        since = (datetime.now(timezone.utc) - timedelta(days=get_settings().sync_lookback_days)).strftime('%d-%b-%Y')
        data = self._uid('search', None, 'UNSEEN', 'SINCE', since, 'NOT', 'FROM', f'"{self.address}"')
        uids = data[0].split() if data and data[0] else []
        return [u.decode() if isinstance(u, bytes) else str(u) for u in uids[-limit:]]

    def get_message(self, message_id: str) -> Dict:
        # PEEK leaves \Seen untouched; marking read is a separate step
        data = self._uid('fetch', message_id, '(BODY.PEEK[])')
        for part in data:
            if isinstance(part, tuple):
                return payload_from_rfc822(part[1], message_id=message_id, labels=['UNREAD', 'INBOX'])
        raise ProviderError(f'IMAP message {message_id} not found', provider=self.name)

    def send(self, reply: ComposedReply) -> Optional[str]:
        recipients = [t['email'] for t in reply.to if t.get('email')]
        if not recipients:
            raise ValidationError('Reply has no recipient', mailbox=self.address)
        parsed = email.message_from_string(reply.raw_message)
        msg = EmailMessage()
        for header in ('From', 'To', 'Subject'):
            msg[header] = parsed[header]
        if reply.thread_id and reply.thread_id.startswith('<'):
            # IMAP thread ids are the original Message-ID
            msg['In-Reply-To'] = msg['References'] = reply.thread_id
        msg.set_content(reply.response_text)
        port = self.account.smtp_port or 587
        try:
            client = self._smtp_factory(self.account.smtp_host, port)
            try:
                client.login(self.username, self.account.password)
                client.send_message(msg, from_addr=self.address, to_addrs=recipients)
            finally:
                client.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise ProviderError(f'SMTP send failed: {e}', provider=self.name) from e
        return None

    def mark_read(self, message_id: str) -> None:
        self._uid('store', message_id, '+FLAGS', '(\\Seen)')

    def close(self) -> None:
        if self._imap is not None:
            try:
                self._imap.logout()
            except (imaplib.IMAP4.error, OSError):
                self.log.debug("imap_logout_failed", extra={"mailbox": self.address})
            self._imap = None


def _naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # google-auth compares expiry against a naive utcnow()
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def google_credentials(account) -> Credentials:
    """OAuth credentials for a Google account; refreshed on use when expired."""
    s = get_settings()
    return Credentials(
        token=account.access_token,
        refresh_token=account.refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=s.google_client_id,
        client_secret=s.google_client_secret,
        expiry=_naive_utc(account.token_expiry),
    )


def refreshed_tokens(credentials: Credentials, initial_token: Optional[str]) -> Optional[Dict]:
    if not credentials.token or credentials.token == initial_token:
        return None
    return {
        'access_token': credentials.token,
        'refresh_token': credentials.refresh_token,
        'token_expiry': credentials.expiry,
    }


PROVIDERS = {
    'google': GmailProvider,
    'outlook': OutlookProvider,
    'custom': CustomImapProvider,
}


def provider_for(account) -> MailboxProvider:
    cls = PROVIDERS.get((account.provider or '').lower())
    if cls is None:
        raise ValidationError(f"Unknown provider '{account.provider}'", provider=account.provider)
    return cls(account)
