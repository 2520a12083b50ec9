"""Text-in/text-out call against the configured generative model.

Gemini is the default; ``LLM_PROVIDER=openrouter`` switches to OpenRouter's
chat completions endpoint. Any failure (timeout, HTTP error, empty output)
raises ``GenerationError`` so the caller can abort that one message.
"""
from typing import Any, Dict, Optional
import concurrent.futures
import logging
import random
import threading
import time
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone

import google.generativeai as genai
import httpx

from ..core.config import get_settings
from ..core.errors import GenerationError

log = logging.getLogger(__name__)

# Track last error states for diagnostics
LAST_GEMINI_ERROR: Optional[dict] = None
LAST_OR_ERROR: Optional[dict] = None

_configure_lock = threading.Lock()
_configured_key: Optional[str] = None

# in-process spacing between OpenRouter calls; mailbox workers share it
_rate_lock = threading.Lock()
_last_or_ts: float = 0.0
OR_MIN_INTERVAL_S = 1.2


def _ts() -> float:
    return datetime.now(timezone.utc).timestamp()


def _ensure_configured(api_key: str):
    global _configured_key
    with _configure_lock:
        if _configured_key != api_key:
            genai.configure(api_key=api_key)
            _configured_key = api_key


def _gemini_extract_text(resp) -> str:
    if not resp:
        return ""
    try:
        t = resp.text
    except (ValueError, AttributeError):  # blocked or multi-candidate responses
        t = None
    if t:
        return t
    try:
        return resp.candidates[0].content.parts[0].text
    except (AttributeError, IndexError):
        return ""


def _gemini_call(prompt: str) -> str:
    global LAST_GEMINI_ERROR
    s = get_settings()
    if not s.google_api_key:
        raise GenerationError('Generative API key is not configured', provider='gemini')
    _ensure_configured(s.google_api_key)
    model = genai.GenerativeModel(
        s.gemini_model,
        generation_config={'temperature': s.llm_temperature, 'max_output_tokens': s.llm_max_output_tokens},
    )
    ex = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    fut = ex.submit(model.generate_content, prompt)
    try:
        resp = fut.result(timeout=s.gemini_timeout)
    except FuturesTimeout:
        LAST_GEMINI_ERROR = {"error_type": "Timeout", "error_message": f">{s.gemini_timeout}s", "model": s.gemini_model, "ts": _ts()}
        log.warning("gemini_timeout", extra={"provider": "gemini", "error_type": "Timeout"})
        raise GenerationError(f'Gemini timed out after {s.gemini_timeout}s', provider='gemini')
    except Exception as e:
        LAST_GEMINI_ERROR = {"error_type": type(e).__name__, "error_message": str(e)[:300], "model": s.gemini_model,
                             "prompt_chars": len(prompt), "ts": _ts()}
        log.error("gemini_failed", exc_info=e, extra={"provider": "gemini", "error_type": type(e).__name__})
        raise GenerationError(f'Gemini request failed: {e}', provider='gemini') from e
    finally:
        # do not block on a hung request; the worker thread is abandoned
        ex.shutdown(wait=False)
    return _gemini_extract_text(resp).strip()


def _openrouter_content(data: dict) -> str:
    choice = (data.get('choices') or [{}])[0]
    msg = choice.get('message') or {}
    content = msg.get('content')
    # some upstream models return a list of segments
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                for k in ('text', 'content', 'value'):
                    v = part.get(k)
                    if isinstance(v, str) and v.strip():
                        parts.append(v.strip())
            elif isinstance(part, str) and part.strip():
                parts.append(part.strip())
        return "\n".join(parts).strip()
    if isinstance(content, str):
        return content.strip()
    return ''


def _openrouter_call(prompt: str) -> str:
    global LAST_OR_ERROR, _last_or_ts
    s = get_settings()
    if not s.openrouter_api_key:
        raise GenerationError('OpenRouter API key is not configured', provider='openrouter')
    headers = {
        'Authorization': f'Bearer {s.openrouter_api_key}',
        'Content-Type': 'application/json',
        'X-Title': s.app_name,
    }
    payload = {
        "model": s.openrouter_model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": s.llm_temperature,
        "max_tokens": s.llm_max_output_tokens,
    }
    with _rate_lock:
        wait = OR_MIN_INTERVAL_S - (time.monotonic() - _last_or_ts)
        if wait > 0:
            time.sleep(wait + random.uniform(0, 0.12))
        _last_or_ts = time.monotonic()
    try:
        with httpx.Client(timeout=s.openrouter_timeout) as client:
            resp = client.post(s.openrouter_base, headers=headers, json=payload)
    except httpx.HTTPError as e:
        LAST_OR_ERROR = {'error_type': type(e).__name__, 'error_message': str(e)[:300], 'model': s.openrouter_model, 'ts': _ts()}
        log.error("openrouter_failed", exc_info=e, extra={"provider": "openrouter", "error_type": type(e).__name__})
        raise GenerationError(f'OpenRouter request failed: {e}', provider='openrouter') from e
    if resp.status_code >= 400:
        LAST_OR_ERROR = {'error_type': f'http_{resp.status_code}', 'error_message': resp.text[:160], 'model': s.openrouter_model, 'ts': _ts()}
        log.warning("openrouter_http_error", extra={"provider": "openrouter", "status": resp.status_code})
        raise GenerationError(f'OpenRouter returned HTTP {resp.status_code}', provider='openrouter')
    return _openrouter_content(resp.json())


def generate_text(prompt: str) -> str:
    """Single generative call. Raises GenerationError on failure or empty output."""
    provider = get_settings().llm_provider
    if provider in {'openrouter', 'or'}:
        text = _openrouter_call(prompt)
    else:
        text = _gemini_call(prompt)
    if not text:
        raise GenerationError('Generative model returned empty text', provider=provider)
    return text


def test_llm() -> dict:
    """Small probe for the currently selected provider."""
    s = get_settings()
    provider = s.llm_provider
    model = s.openrouter_model if provider in {'openrouter', 'or'} else s.gemini_model
    try:
        txt = generate_text("Respond with a short pong.")
        return {"ok": True, "provider": provider, "model": model, "text": txt[:120]}
    except GenerationError as e:
        return {"ok": False, "provider": provider, "model": model, "error_type": type(e).__name__, "error_message": e.message}


def ai_diagnostics() -> Dict[str, Any]:
    s = get_settings()
    if s.llm_provider in {'openrouter', 'or'}:
        return {
            'provider': s.llm_provider,
            'model': s.openrouter_model,
            'has_key': bool(s.openrouter_api_key),
            'last_error': LAST_OR_ERROR,
            'timeout_default_s': s.openrouter_timeout,
        }
    return {
        'provider': s.llm_provider,
        'model': s.gemini_model,
        'has_key': bool(s.google_api_key),
        'last_error': LAST_GEMINI_ERROR,
        'timeout_default_s': s.gemini_timeout,
    }
