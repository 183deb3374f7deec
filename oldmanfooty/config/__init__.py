from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlparse

from croniter import croniter
from dotenv import load_dotenv

load_dotenv()


DEFAULT_MYSIDELINE_URL = (
    'https://profile.mysideline.com.au/register/clubsearch/'
    '?criteria=Masters&source=rugby-league'
)
DEFAULT_MYSIDELINE_EVENT_URL = (
    'https://profile.mysideline.com.au/register/clubsearch/'
    '?source=rugby-league&entityType=team&isEntityIdSearch=true&entity=true&criteria='
)
DEFAULT_USER_AGENT = 'OldManFooty-MySidelineSync/1.0 (+https://www.oldmanfooty.au)'


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes', 'on')


class ConfigError(Exception):
    """Raised when the MySideline sync configuration is unusable."""


class Config:
    # Provide a safe development fallback to avoid 500s when SECRET_KEY is missing.
    SECRET_KEY = os.getenv('SECRET_KEY') or 'dev-secret-key-change-me'
    DATABASE_URL = os.getenv('DATABASE_URL')
    SQLALCHEMY_DATABASE_URI = DATABASE_URL or 'sqlite:///oldmanfooty.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    REMEMBER_COOKIE_SECURE = True
    REMEMBER_COOKIE_HTTPONLY = True
    WTF_CSRF_TIME_LIMIT = None

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    # Create missing tables on startup when no migrations have been applied
    BOOTSTRAP_TABLES = os.getenv('OMF_SKIP_BOOTSTRAP', '0') != '1'

    # MySideline carnival sync
    MYSIDELINE_SYNC_ENABLED = _env_flag('MYSIDELINE_SYNC_ENABLED', 'true')
    MYSIDELINE_SYNC_SCHEDULE = os.getenv('MYSIDELINE_SYNC_SCHEDULE', '0 3 * * *')
    MYSIDELINE_URL = os.getenv('MYSIDELINE_URL', DEFAULT_MYSIDELINE_URL)
    MYSIDELINE_EVENT_URL = os.getenv('MYSIDELINE_EVENT_URL', DEFAULT_MYSIDELINE_EVENT_URL)
    MYSIDELINE_REQUEST_TIMEOUT = os.getenv('MYSIDELINE_REQUEST_TIMEOUT', 60_000)
    MYSIDELINE_RETRY_ATTEMPTS = os.getenv('MYSIDELINE_RETRY_ATTEMPTS', 3)
    MYSIDELINE_RETRY_BACKOFF = os.getenv('MYSIDELINE_RETRY_BACKOFF', 1_000)
    MYSIDELINE_USER_AGENT = os.getenv('MYSIDELINE_USER_AGENT', DEFAULT_USER_AGENT)
    MYSIDELINE_USE_MOCK = _env_flag('MYSIDELINE_USE_MOCK')
    MYSIDELINE_STALENESS_THRESHOLD = os.getenv('MYSIDELINE_STALENESS_THRESHOLD', 3_600_000)
    MYSIDELINE_STARTUP_DELAY = os.getenv('MYSIDELINE_STARTUP_DELAY', 2_000)
    MYSIDELINE_ALLOW_MANUAL_WHEN_DISABLED = _env_flag('MYSIDELINE_ALLOW_MANUAL_WHEN_DISABLED', 'true')
    # Overall run budget in ms; derived from timeout and attempts when unset
    MYSIDELINE_RUN_BUDGET = os.getenv('MYSIDELINE_RUN_BUDGET')
    # Execute manual runs in the web process instead of handing them to RQ
    MYSIDELINE_INLINE_RUNS = _env_flag('MYSIDELINE_INLINE_RUNS')


@dataclass(frozen=True)
class MySidelineSettings:
    enabled: bool
    schedule: str
    url: str
    event_url: str
    timeout_ms: int
    retry_attempts: int
    retry_backoff_ms: int
    user_agent: str
    use_mock: bool
    staleness_threshold_ms: int
    startup_delay_ms: int
    allow_manual_when_disabled: bool
    run_budget_ms: int
    inline_runs: bool
    sync_type: str = 'mysideline'

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'MySidelineSettings':
        """Build validated settings from a Flask config mapping."""
        url = str(config.get('MYSIDELINE_URL') or '').strip()
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigError(f'MYSIDELINE_URL must be an absolute http(s) URL, got {url!r}')

        schedule = str(config.get('MYSIDELINE_SYNC_SCHEDULE') or '').strip()
        if not croniter.is_valid(schedule):
            raise ConfigError(f'MYSIDELINE_SYNC_SCHEDULE is not a valid cron expression: {schedule!r}')

        timeout_ms = _positive(config, 'MYSIDELINE_REQUEST_TIMEOUT', 60_000)
        retry_attempts = _positive(config, 'MYSIDELINE_RETRY_ATTEMPTS', 3)
        backoff_ms = _non_negative(config, 'MYSIDELINE_RETRY_BACKOFF', 1_000)
        staleness_ms = _positive(config, 'MYSIDELINE_STALENESS_THRESHOLD', 3_600_000)
        startup_delay_ms = _non_negative(config, 'MYSIDELINE_STARTUP_DELAY', 2_000)

        budget_raw = config.get('MYSIDELINE_RUN_BUDGET')
        if budget_raw in (None, ''):
            run_budget_ms = timeout_ms * retry_attempts + 120_000
        else:
            run_budget_ms = _positive(config, 'MYSIDELINE_RUN_BUDGET', 0)

        return cls(
            enabled=bool(config.get('MYSIDELINE_SYNC_ENABLED', True)),
            schedule=schedule,
            url=url,
            event_url=str(config.get('MYSIDELINE_EVENT_URL') or DEFAULT_MYSIDELINE_EVENT_URL),
            timeout_ms=timeout_ms,
            retry_attempts=retry_attempts,
            retry_backoff_ms=backoff_ms,
            user_agent=str(config.get('MYSIDELINE_USER_AGENT') or DEFAULT_USER_AGENT),
            use_mock=bool(config.get('MYSIDELINE_USE_MOCK', False)),
            staleness_threshold_ms=staleness_ms,
            startup_delay_ms=startup_delay_ms,
            allow_manual_when_disabled=bool(config.get('MYSIDELINE_ALLOW_MANUAL_WHEN_DISABLED', True)),
            run_budget_ms=run_budget_ms,
            inline_runs=bool(config.get('MYSIDELINE_INLINE_RUNS', False)),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            'enabled': self.enabled,
            'schedule': self.schedule,
            'url': self.url,
            'timeoutMs': self.timeout_ms,
            'retryAttempts': self.retry_attempts,
            'useMock': self.use_mock,
            'stalenessThresholdMs': self.staleness_threshold_ms,
            'runBudgetMs': self.run_budget_ms,
        }


def _coerce_int(config: Mapping[str, Any], key: str, default: int) -> int:
    value = config.get(key, default)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f'{key} must be an integer, got {value!r}')


def _positive(config: Mapping[str, Any], key: str, default: int) -> int:
    value = _coerce_int(config, key, default)
    if value <= 0:
        raise ConfigError(f'{key} must be greater than zero, got {value}')
    return value


def _non_negative(config: Mapping[str, Any], key: str, default: int) -> int:
    value = _coerce_int(config, key, default)
    if value < 0:
        raise ConfigError(f'{key} must not be negative, got {value}')
    return value


__all__ = ['Config', 'ConfigError', 'MySidelineSettings']
