"""HTTP retrieval of the MySideline carnival listing."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

import requests
from requests.adapters import HTTPAdapter

from oldmanfooty.config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

FIXTURE_PATH = Path(__file__).resolve().parent.parent / "fixtures" / "mysideline_masters.html"

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
JSON_CONTENT_TYPES = ("application/json", "text/json")

# Per-host connection limit for the shared client
POOL_SIZE = 4


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    TRANSPORT_FAILURE = "transportFailure"
    HTTP_STATUS = "httpStatus"
    INVALID_CONTENT_TYPE = "invalidContentType"


class FetchError(Exception):
    """Terminal failure to retrieve the source document."""

    def __init__(
        self,
        kind: FetchErrorKind,
        *,
        status_code: int | None = None,
        attempts: int = 0,
        detail: str | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.attempts = attempts
        self.detail = detail
        super().__init__(self.describe())

    def describe(self) -> str:
        if self.kind is FetchErrorKind.HTTP_STATUS and self.status_code is not None:
            return f"{self.kind.value}({self.status_code})"
        return self.kind.value

    @property
    def retryable(self) -> bool:
        if self.kind in (FetchErrorKind.TIMEOUT, FetchErrorKind.TRANSPORT_FAILURE):
            return True
        if self.kind is FetchErrorKind.HTTP_STATUS and self.status_code is not None:
            return self.status_code == 429 or 500 <= self.status_code < 600
        return False


@dataclass(frozen=True)
class FetchConfig:
    url: str
    timeout_ms: int = 60_000
    retry_attempts: int = 3
    retry_backoff_ms: int = 1_000
    user_agent: str = DEFAULT_USER_AGENT
    mock: bool = False
    fixture_path: Path = FIXTURE_PATH

    @classmethod
    def from_settings(cls, settings) -> "FetchConfig":
        return cls(
            url=settings.url,
            timeout_ms=settings.timeout_ms,
            retry_attempts=settings.retry_attempts,
            retry_backoff_ms=settings.retry_backoff_ms,
            user_agent=settings.user_agent,
            mock=settings.use_mock,
        )


@dataclass(frozen=True)
class RawPayload:
    content: bytes
    content_type: str
    url: str
    attempts: int = 1

    @property
    def is_json(self) -> bool:
        return self.content_type in JSON_CONTENT_TYPES


_session: requests.Session | None = None
_session_lock = threading.Lock()


def get_http_session() -> requests.Session:
    """Process-wide session with a bounded connection pool."""
    global _session
    with _session_lock:
        if _session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=POOL_SIZE,
                pool_maxsize=POOL_SIZE,
                pool_block=True,
                max_retries=0,
            )
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            _session = session
        return _session


def backoff_delay(attempt: int, base_ms: int, jitter: Callable[[float, float], float] = random.uniform) -> float:
    """Seconds to wait after a failed attempt: base * 2^(attempt-1) plus jitter in [0, base)."""
    base = base_ms / 1000.0
    if base <= 0:
        return 0.0
    return base * (2 ** (attempt - 1)) + jitter(0.0, base)


def load_fixture(config: FetchConfig) -> RawPayload:
    logger.info("MySideline mock mode: loading fixture %s", config.fixture_path)
    return RawPayload(
        content=config.fixture_path.read_bytes(),
        content_type="text/html",
        url=config.url,
        attempts=1,
    )


def _media_type(header: str | None) -> str:
    if not header:
        return "text/html"
    return header.split(";", 1)[0].strip().lower()


def _attempt(session: requests.Session, config: FetchConfig, timeout: float, attempt: int) -> RawPayload:
    headers = {
        "User-Agent": config.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.5",
    }
    try:
        response = session.get(config.url, headers=headers, timeout=timeout)
    except requests.Timeout as exc:
        raise FetchError(FetchErrorKind.TIMEOUT, attempts=attempt, detail=str(exc)) from exc
    except requests.RequestException as exc:
        raise FetchError(FetchErrorKind.TRANSPORT_FAILURE, attempts=attempt, detail=str(exc)) from exc

    if not 200 <= response.status_code < 300:
        raise FetchError(
            FetchErrorKind.HTTP_STATUS,
            status_code=response.status_code,
            attempts=attempt,
            detail=response.reason,
        )

    media_type = _media_type(response.headers.get("Content-Type"))
    if media_type not in HTML_CONTENT_TYPES + JSON_CONTENT_TYPES:
        raise FetchError(FetchErrorKind.INVALID_CONTENT_TYPE, attempts=attempt, detail=media_type)

    return RawPayload(
        content=response.content,
        content_type=media_type,
        url=response.url or config.url,
        attempts=attempt,
    )


def fetch_source(
    config: FetchConfig,
    *,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] = time.sleep,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RawPayload:
    """Retrieve the source document, retrying transient failures.

    ``deadline`` is an absolute ``clock()`` value; attempts and backoff never
    extend past it.
    """
    if config.mock:
        return load_fixture(config)

    session = session or get_http_session()
    last_error: FetchError | None = None

    for attempt in range(1, config.retry_attempts + 1):
        timeout = config.timeout_ms / 1000.0
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise last_error or FetchError(FetchErrorKind.TIMEOUT, attempts=attempt - 1)
            timeout = min(timeout, remaining)

        try:
            payload = _attempt(session, config, timeout, attempt)
        except FetchError as exc:
            last_error = exc
            if not exc.retryable or attempt >= config.retry_attempts:
                logger.error("MySideline fetch failed after %s attempt(s): %s", attempt, exc.describe())
                raise
            delay = backoff_delay(attempt, config.retry_backoff_ms)
            if deadline is not None and clock() + delay >= deadline:
                logger.error("MySideline fetch out of budget after %s attempt(s): %s", attempt, exc.describe())
                raise
            logger.warning(
                "MySideline fetch attempt %s/%s failed (%s); retrying in %.1fs",
                attempt,
                config.retry_attempts,
                exc.describe(),
                delay,
            )
            sleep(delay)
            continue

        logger.info("Fetched %s bytes from %s in %s attempt(s)", len(payload.content), payload.url, attempt)
        return payload

    # retry_attempts < 1 never reaches here; FetchConfig is validated upstream
    raise last_error or FetchError(FetchErrorKind.TRANSPORT_FAILURE, attempts=0)


__all__ = [
    "FetchConfig",
    "FetchError",
    "FetchErrorKind",
    "RawPayload",
    "backoff_delay",
    "fetch_source",
    "get_http_session",
    "load_fixture",
]
