import base64

import pytest

from backend.replai.core.errors import GenerationError
from backend.replai.services.email_parser import extract_message
from backend.replai.services.reply_composer import ReplyComposer, build_prompt, DEFAULT_PROMPT
from conftest import gmail_message, FakeGenerator


def _message(**kw):
    return extract_message(gmail_message("m1", kw.pop("from_", "Alice <alice@example.com>"), **kw))


def test_default_prompt_carries_the_message_and_signature():
    prompt = build_prompt(_message(subject="Invoice", body="Can you resend it?"), "Sam")
    assert prompt.startswith("Respond to this email briefly and naturally as a real person:")
    assert "From: Alice <alice@example.com>" in prompt
    assert "Subject: Invoice" in prompt
    assert "Body: Can you resend it?" in prompt
    assert 'Sign with "Best regards, Sam"' in prompt
    assert "Avoid markdown formatting" in DEFAULT_PROMPT


def test_custom_instructions_replace_default():
    assert build_prompt(_message(), "Sam", "Always answer in French.") == "Always answer in French."
    assert build_prompt(_message(), "Sam", "   ").startswith("Respond to this email")


def test_compose_builds_raw_reply():
    gen = FakeGenerator(text="  Sure, sending now.\nBest regards, Sam  ")
    reply = ReplyComposer(gen).compose(_message(subject="Invoice"), "me@example.com", "Sam")
    assert reply.response_text == "Sure, sending now.\nBest regards, Sam"
    lines = reply.raw_message.split("\n")
    assert lines[:4] == ["From: me@example.com", "To: Alice <alice@example.com>",
                         "Subject: Re: Invoice", "Content-Type: text/plain; charset=utf-8"]
    assert lines[4] == ""
    assert "=" not in reply.encoded
    padded = reply.encoded + "=" * (-len(reply.encoded) % 4)
    assert base64.urlsafe_b64decode(padded).decode() == reply.raw_message
    assert reply.thread_id == "t-m1"


def test_subject_prefix_is_not_deduplicated():
    reply = ReplyComposer(FakeGenerator()).compose(_message(subject="Re: Invoice"), "me@example.com", "Sam")
    assert reply.subject == "Re: Re: Invoice"


def test_generation_failures_raise():
    with pytest.raises(GenerationError):
        ReplyComposer(FakeGenerator(fail=True)).compose(_message(), "me@example.com", "Sam")
    with pytest.raises(GenerationError):
        ReplyComposer(FakeGenerator(text="   ")).compose(_message(), "me@example.com", "Sam")
