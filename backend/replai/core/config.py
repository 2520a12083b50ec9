"""Runtime configuration read once from the environment.

Values come from process env (``backend/.env`` is loaded by ``main`` before the
first call). Every key has a default so the app boots in a bare dev shell.
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass
class Settings:
    database_url: str = 'sqlite:///./replai.db'
    jwt_secret: str = 'change-me'
    jwt_expires_minutes: int = 60 * 24 * 7
    dashboard_url: str = 'http://localhost:3001/email-manager'
    app_name: str = 'Replai'

    google_client_id: str = ''
    google_client_secret: str = ''
    google_redirect_uri: str = 'http://localhost:8000/api/emails/auth/google/callback'

    llm_provider: str = 'gemini'
    google_api_key: str = ''
    gemini_model: str = 'gemini-1.5-flash'
    gemini_timeout: float = 20.0
    openrouter_api_key: str = ''
    openrouter_model: str = 'openrouter/auto'
    openrouter_base: str = 'https://openrouter.ai/api/v1/chat/completions'
    openrouter_timeout: float = 20.0
    llm_temperature: float = 0.7
    llm_max_output_tokens: int = 1000

    sync_interval: float = 60.0  # seconds
    sync_batch_size: int = 5
    sync_lookback_days: int = 7
    auto_reconnect: bool = True

    stripe_secret_key: str = ''
    stripe_webhook_secret: str = ''
    stripe_prices: dict = field(default_factory=dict)

    cors_origins: List[str] = field(default_factory=lambda: ['*'])
    log_level: str = 'INFO'


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv('DATABASE_URL', 'sqlite:///./replai.db'),
        jwt_secret=os.getenv('JWT_SECRET', 'change-me'),
        jwt_expires_minutes=_env_int('JWT_EXPIRES_MINUTES', 60 * 24 * 7),
        dashboard_url=os.getenv('DASHBOARD_URL', 'http://localhost:3001/email-manager'),
        app_name=os.getenv('APP_NAME', 'Replai'),
        google_client_id=os.getenv('GOOGLE_CLIENT_ID', ''),
        google_client_secret=os.getenv('GOOGLE_CLIENT_SECRET', ''),
        google_redirect_uri=os.getenv('GOOGLE_REDIRECT_URI', 'http://localhost:8000/api/emails/auth/google/callback'),
        llm_provider=os.getenv('LLM_PROVIDER', 'gemini').lower(),
        # GENERATIVE_AI_API_KEY is the older name still found in deployed .env files
        google_api_key=os.getenv('GOOGLE_API_KEY') or os.getenv('GENERATIVE_AI_API_KEY', ''),
        gemini_model=os.getenv('GEMINI_MODEL', 'gemini-1.5-flash'),
        gemini_timeout=_env_float('GEMINI_TIMEOUT', 20.0),
        openrouter_api_key=os.getenv('OPENROUTER_API_KEY', ''),
        openrouter_model=os.getenv('OPENROUTER_MODEL', 'openrouter/auto'),
        openrouter_base=os.getenv('OPENROUTER_BASE', 'https://openrouter.ai/api/v1/chat/completions'),
        openrouter_timeout=_env_float('OPENROUTER_TIMEOUT', 20.0),
        llm_temperature=_env_float('AI_TEMPERATURE', 0.7),
        llm_max_output_tokens=_env_int('AI_MAX_OUTPUT_TOKENS', 1000),
        sync_interval=_env_float('EMAIL_SYNC_INTERVAL', 60.0),
        sync_batch_size=_env_int('EMAIL_SYNC_BATCH_SIZE', 5),
        sync_lookback_days=_env_int('EMAIL_SYNC_LOOKBACK_DAYS', 7),
        auto_reconnect=_env_bool('EMAIL_AUTO_RECONNECT', True),
        stripe_secret_key=os.getenv('STRIPE_SECRET_KEY', ''),
        stripe_webhook_secret=os.getenv('STRIPE_WEBHOOK_SECRET', ''),
        stripe_prices={
            plan: price for plan, price in {
                'pro_monthly': os.getenv('STRIPE_PRICE_PRO_MONTHLY', ''),
                'pro_yearly': os.getenv('STRIPE_PRICE_PRO_YEARLY', ''),
                'business': os.getenv('STRIPE_PRICE_BUSINESS', ''),
            }.items() if price
        },
        cors_origins=[o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()],
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
