from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging

from ..core.errors import GenerationError
from .email_parser import ExtractedMessage, encode_base64url
from .generative_text import generate_text

DEFAULT_PROMPT = (
    "Respond to this email briefly and naturally as a real person:\n"
    "From: {from_}\n"
    "Subject: {subject}\n"
    "Body: {body}\n"
    "\n"
    "Guidelines:\n"
    "- Keep response short and simple\n"
    "- Use casual language\n"
    "- Sign with \"Best regards, {user_name}\"\n"
    "- Avoid markdown formatting"
)


@dataclass
class ComposedReply:
    response_text: str
    raw_message: str
    encoded: str
    subject: str
    to: List[Dict[str, str]] = field(default_factory=list)
    from_address: str = ''
    thread_id: Optional[str] = None


def build_prompt(message: ExtractedMessage, user_name: str, instructions: Optional[str] = None) -> str:
    """Custom instructions, when non-empty, replace the default prompt outright."""
    if instructions and instructions.strip():
        return instructions
    return DEFAULT_PROMPT.format(
        from_=message.from_,
        subject=message.subject,
        body=message.plain_body,
        user_name=user_name or '',
    )


def build_raw_reply(mailbox_address: str, to_address: str, subject: str, body: str) -> str:
    return "\n".join([
        f"From: {mailbox_address}",
        f"To: {to_address}",
        f"Subject: Re: {subject}",
        "Content-Type: text/plain; charset=utf-8",
        "",
        body,
    ])


class ReplyComposer:
    """Turns one inbound message into a ready-to-send reply.

    ``generate`` is the text-in/text-out model call; it is injectable so the
    poll loop can be exercised without a vendor API.
    """

    def __init__(self, generate: Optional[Callable[[str], str]] = None):
        self.generate = generate or generate_text
        self.log = logging.getLogger(__name__)

    def compose(self, message: ExtractedMessage, mailbox_address: str, user_name: str,
                instructions: Optional[str] = None) -> ComposedReply:
        prompt = build_prompt(message, user_name, instructions)
        try:
            text = self.generate(prompt)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f'Reply generation failed: {e}') from e
        text = (text or '').strip()
        if not text:
            raise GenerationError('Generative model returned empty text')

        # the original From header (display name included) is the reply target
        to_header = message.from_
        raw = build_raw_reply(mailbox_address, to_header, message.subject, text)
        sender = message.sender
        self.log.debug("reply_composed", extra={"mailbox": mailbox_address, "message_id": message.message_id})
        return ComposedReply(
            response_text=text,
            raw_message=raw,
            encoded=encode_base64url(raw),
            subject=f"Re: {message.subject}",
            to=[sender] if sender.get('email') else [],
            from_address=mailbox_address,
            thread_id=message.thread_id,
        )
