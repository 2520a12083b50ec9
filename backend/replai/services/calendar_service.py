"""Google Calendar CRUD through the user's connected Google account."""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..core.errors import NotConnectedError, NotFoundError, ProviderError, ValidationError
from ..models.account_model import ConnectedAccount
from .mailbox_providers import google_credentials, refreshed_tokens
from .connection_registry import update_tokens

CALENDAR_ID = 'primary'
DEFAULT_DURATION = timedelta(hours=1)


def google_account(db: Session, user_id: int) -> ConnectedAccount:
    account = db.query(ConnectedAccount).filter(
        ConnectedAccount.user_id == user_id, ConnectedAccount.provider == 'google'
    ).order_by(ConnectedAccount.id).first()
    if account is None:
        raise NotConnectedError('Connect a Google account to use the calendar')
    return account


class CalendarService:
    def __init__(self, db: Session, account: ConnectedAccount, service=None):
        self.db = db
        self.account = account
        self.credentials = google_credentials(account)
        self._initial_token = account.access_token
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = build('calendar', 'v3', credentials=self.credentials, cache_discovery=False)
        return self._service

    def _execute(self, op: str, request):
        try:
            result = request.execute()
        except HttpError as e:
            status = getattr(e.resp, 'status', None)
            if status == 404:
                raise NotFoundError('Event not found')
            raise ProviderError(f'Calendar {op} failed ({status})', provider='google', status=status) from e
        state = refreshed_tokens(self.credentials, self._initial_token)
        if state:
            self._initial_token = state['access_token']
            update_tokens(self.db, self.account, state['access_token'], state.get('refresh_token'), state.get('token_expiry'))
        return result

    def list_events(self, time_min: Optional[str] = None, time_max: Optional[str] = None) -> List[Dict]:
        if not time_min:
            time_min = (datetime.now(timezone.utc) - timedelta(days=30)).isoformat()
        kwargs = {'calendarId': CALENDAR_ID, 'timeMin': time_min, 'singleEvents': True,
                  'orderBy': 'startTime', 'maxResults': 2500}
        if time_max:
            kwargs['timeMax'] = time_max
        return self._execute('list', self.service.events().list(**kwargs)).get('items', [])

    def create_event(self, data: Dict) -> Dict:
        body = event_body(data)
        send_updates = 'all' if data.get('notify_attendees') else 'none'
        return self._execute('insert', self.service.events().insert(
            calendarId=CALENDAR_ID, body=body, sendUpdates=send_updates))

    def update_event(self, event_id: str, data: Dict) -> Dict:
        body = event_body(data, partial=True)
        return self._execute('patch', self.service.events().patch(
            calendarId=CALENDAR_ID, eventId=event_id, body=body))

    def delete_event(self, event_id: str) -> None:
        self._execute('delete', self.service.events().delete(calendarId=CALENDAR_ID, eventId=event_id))


def _parse_iso(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid date/time: {value}')


def event_body(data: Dict, partial: bool = False) -> Dict:
    """Calendar API event resource from the flat request fields."""
    body: Dict = {}
    if not partial:
        if not data.get('title'):
            raise ValidationError('Event title is required')
        if not data.get('start'):
            raise ValidationError('Event start is required')
    if data.get('title'):
        body['summary'] = data['title']
    for key in ('location', 'description'):
        if data.get(key):
            body[key] = data[key]
    if data.get('attendees'):
        body['attendees'] = [{'email': a} for a in data['attendees']]
    start = data.get('start')
    if start:
        end = data.get('end')
        if data.get('all_day'):
            body['start'] = {'date': start.split('T')[0]}
            end_date = end.split('T')[0] if end else (_parse_iso(start) + timedelta(days=1)).date().isoformat()
            body['end'] = {'date': end_date}
        else:
            if not end:
                end = (_parse_iso(start) + DEFAULT_DURATION).isoformat()
            body['start'] = {'dateTime': start}
            body['end'] = {'dateTime': end}
            if data.get('time_zone'):
                body['start']['timeZone'] = body['end']['timeZone'] = data['time_zone']
    return body
