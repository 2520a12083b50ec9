"""Pull readable content out of provider message payloads.

Every provider hands us a Gmail-shaped payload: ``{id, threadId, labelIds,
snippet, payload: {mimeType, headers: [{name, value}], body: {data, size,
attachmentId}, parts: [...]}}``. IMAP messages are converted into that shape
by ``payload_from_rfc822`` so there is exactly one extractor.
"""
from __future__ import annotations
import base64
import binascii
import email
import re
from dataclasses import dataclass, field
from email.header import decode_header, make_header
from typing import Dict, List, Optional

NO_CONTENT = '(No content found)'
NO_SUBJECT = '(No Subject)'


@dataclass
class ExtractedMessage:
    message_id: str
    thread_id: Optional[str]
    subject: str
    from_: str
    to: List[Dict[str, str]]
    date: Optional[str]
    plain_body: str
    html_body: Optional[str]
    attachments: List[Dict] = field(default_factory=list)
    snippet: str = ''
    labels: List[str] = field(default_factory=list)
    headers: List[Dict[str, str]] = field(default_factory=list)

    @property
    def sender(self) -> Dict[str, str]:
        return parse_address(self.from_)


def decode_base64url(data: Optional[str]) -> Optional[str]:
    """Decode base64url text; returns None instead of raising on bad input."""
    if not data:
        return None
    try:
        padded = data + '=' * (-len(data) % 4)
        raw = base64.b64decode(padded.encode('ascii'), altchars=b'-_', validate=True)
        return raw.decode('utf-8', errors='replace')
    except (binascii.Error, ValueError, UnicodeEncodeError):
        return None


def encode_base64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode('utf-8')).decode('ascii').rstrip('=')


def header_value(headers: Optional[List[Dict[str, str]]], name: str) -> Optional[str]:
    wanted = name.lower()
    for h in headers or []:
        if (h.get('name') or '').lower() == wanted:
            return h.get('value')
    return None


def _find_part(part: Optional[Dict], mime_type: str) -> Optional[str]:
    # depth-first: a nested multipart is searched before its later siblings
    if not part:
        return None
    for sub in part.get('parts') or []:
        if sub.get('mimeType') == mime_type:
            text = decode_base64url((sub.get('body') or {}).get('data'))
            if text is not None:
                return text
        found = _find_part(sub, mime_type)
        if found is not None:
            return found
    return None


def plain_body(payload: Optional[Dict]) -> str:
    if not payload:
        return NO_CONTENT
    if payload.get('parts'):
        text = _find_part(payload, 'text/plain')
        return text if text is not None else NO_CONTENT
    text = decode_base64url((payload.get('body') or {}).get('data'))
    return text if text is not None else NO_CONTENT


def html_body(payload: Optional[Dict]) -> Optional[str]:
    if not payload:
        return None
    if not payload.get('parts'):
        if payload.get('mimeType') == 'text/html':
            return decode_base64url((payload.get('body') or {}).get('data'))
        return None
    return _find_part(payload, 'text/html')


def attachments(payload: Optional[Dict]) -> List[Dict]:
    out: List[Dict] = []

    def walk(part: Dict):
        for sub in part.get('parts') or []:
            body = sub.get('body') or {}
            if sub.get('filename') and body.get('attachmentId'):
                out.append({
                    'filename': sub['filename'],
                    'mime_type': sub.get('mimeType'),
                    'size': body.get('size', 0),
                    'attachment_id': body['attachmentId'],
                })
            walk(sub)

    if payload:
        walk(payload)
    return out


_ADDR_RE = re.compile(r'^\s*(.*?)\s*<([^>]+)>\s*$')


def parse_address(value: Optional[str]) -> Dict[str, str]:
    """``"Name <addr>"`` -> ``{"name", "email"}``; bare strings become the email."""
    if not value:
        return {'name': '', 'email': ''}
    m = _ADDR_RE.match(value)
    if not m:
        return {'name': '', 'email': value.strip()}
    name = m.group(1).strip().strip('"').strip("'").strip()
    return {'name': name, 'email': m.group(2).strip()}


def parse_address_list(value: Optional[str]) -> List[Dict[str, str]]:
    if not value:
        return []
    items, buf, quoted = [], [], False
    for ch in value:
        if ch == '"':
            quoted = not quoted
        if ch == ',' and not quoted:
            items.append(''.join(buf))
            buf = []
            continue
        buf.append(ch)
    items.append(''.join(buf))
    return [parse_address(i) for i in items if i.strip()]


def extract_message(message: Dict) -> ExtractedMessage:
    payload = message.get('payload') or {}
    headers = payload.get('headers') or []
    return ExtractedMessage(
        message_id=message.get('id', ''),
        thread_id=message.get('threadId'),
        subject=header_value(headers, 'Subject') or NO_SUBJECT,
        from_=header_value(headers, 'From') or '',
        to=parse_address_list(header_value(headers, 'To')),
        date=header_value(headers, 'Date'),
        plain_body=plain_body(payload),
        html_body=html_body(payload),
        attachments=attachments(payload),
        snippet=message.get('snippet') or '',
        labels=list(message.get('labelIds') or []),
        headers=headers,
    )


def _decoded_header(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    try:
        return str(make_header(decode_header(raw)))
    except (UnicodeDecodeError, LookupError, binascii.Error):
        return raw


def _part_to_payload(part: email.message.Message) -> Dict:
    node: Dict = {
        'mimeType': part.get_content_type(),
        'filename': part.get_filename() or '',
        'headers': [{'name': k, 'value': _decoded_header(v)} for k, v in part.items()],
        'body': {'size': 0},
    }
    if part.is_multipart():
        node['parts'] = [_part_to_payload(p) for p in part.get_payload()]
        return node
    raw = part.get_payload(decode=True) or b''
    node['body']['size'] = len(raw)
    if node['filename']:
        # IMAP has no attachment handle; the filename doubles as one
        node['body']['attachmentId'] = node['filename']
    else:
        charset = part.get_content_charset() or 'utf-8'
        try:
            text = raw.decode(charset, errors='ignore')
        except LookupError:
            text = raw.decode('utf-8', errors='ignore')
        node['body']['data'] = encode_base64url(text)
    return node


def payload_from_rfc822(raw: bytes, message_id: str = '', labels: Optional[List[str]] = None) -> Dict:
    """Wrap an RFC 822 message (as fetched over IMAP) in the provider payload shape."""
    msg = email.message_from_bytes(raw)
    payload = _part_to_payload(msg)
    text = plain_body(payload)
    return {
        'id': message_id,
        'threadId': msg.get('Message-ID') or message_id,
        'labelIds': list(labels or []),
        'snippet': '' if text == NO_CONTENT else re.sub(r'\s+', ' ', text).strip()[:200],
        'payload': payload,
    }
