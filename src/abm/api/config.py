#!/usr/bin/env python3
"""Run configuration for the Apple Business / School Manager API.

The configuration is built once at startup (from the environment, a .env
file, or explicit arguments) and passed to every component. It is frozen:
nothing in the engine mutates it during a run.

Environment Variables:
    - ABM_MANAGER_TYPE: "business" or "school" (selects base URL and scope)
    - ABM_CLIENT_ID: API client id (e.g. BUSINESSAPI.1234...)
    - ABM_CLIENT_ASSERTION: Signed JWT client assertion
    - ABM_CLIENT_ASSERTION_FILE: Path to a file holding the assertion
    - ABM_BASE_URL / ABM_TOKEN_URL: Optional endpoint overrides
    - ABM_OUTPUT_DIR: Directory for exports and activity reports
    - ABM_PAGE_DELAY, ABM_ITEM_DELAY, ABM_BACKOFF_UNIT, ABM_MAX_ATTEMPTS,
      ABM_POLL_INTERVAL, ABM_MAX_CHECKS: Pacing and retry knobs

Example:
    >>> config = ABMConfig.from_env()
    >>> config.api_base_url
    'https://api-business.apple.com/v1'
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)


TOKEN_URL = "https://account.apple.com/auth/oauth2/token"

# manager type -> (API base URL, OAuth scope)
MANAGER_ENDPOINTS = {
    "business": ("https://api-business.apple.com/v1", "business.api"),
    "school": ("https://api-school.apple.com/v1", "school.api"),
}


# ============================================
# Policies
# ============================================

@dataclass(frozen=True)
class PaginationConfig:
    """Configuration for cursor-paginated listing requests.

    Attributes:
        page_size: Number of items per request (API maximum is 1000)
        delay_between_pages: Seconds to wait between pages of one scope
        max_pages: Safety limit per scope (None = follow the cursor chain)
    """
    page_size: int = 1000
    delay_between_pages: float = 0.2
    max_pages: Optional[int] = None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for the primary device detail fetch.

    On HTTP 429 the fetch waits ``attempt * backoff_unit`` seconds before
    the next attempt. There is no wait after the final attempt, so with
    5 attempts and a unit of 2s the total wait is 2+4+6+8 = 20s.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_unit: Linear backoff step in seconds
        item_delay: Fixed pause after every enriched item (rate limit pacing)
    """
    max_attempts: int = 5
    backoff_unit: float = 3.0
    item_delay: float = 1.0

    def backoff_for(self, attempt: int) -> float:
        """Seconds to wait after a rate-limited ``attempt`` (1-based)."""
        return attempt * self.backoff_unit


@dataclass(frozen=True)
class MonitorPolicy:
    """Polling budget for device activities (default: 60 x 5s = 5 minutes)."""
    interval: float = 5.0
    max_checks: int = 60

    @property
    def budget_seconds(self) -> float:
        return self.interval * self.max_checks


DEVICES_PAGINATION = PaginationConfig()

SERVERS_PAGINATION = PaginationConfig(page_size=100, delay_between_pages=0.2)


# ============================================
# Run Configuration
# ============================================

@dataclass(frozen=True)
class ABMConfig:
    """Immutable configuration for one run of the sync engine.

    Attributes:
        manager_type: "business" or "school"
        client_id: API client id
        client_assertion: Signed JWT used as the OAuth2 client assertion
        api_base_url: API base URL (derived from manager_type unless given)
        token_url: OAuth2 token endpoint
        scope: OAuth2 scope (derived from manager_type unless given)
        output_dir: Directory for exports and activity reports
    """
    manager_type: str
    client_id: str
    client_assertion: str = field(repr=False)
    api_base_url: str = ""
    token_url: str = TOKEN_URL
    scope: str = ""
    output_dir: Path = Path(".")
    pagination: PaginationConfig = DEVICES_PAGINATION
    retry_policy: RetryPolicy = RetryPolicy()
    monitor_policy: MonitorPolicy = MonitorPolicy()

    def __post_init__(self):
        if self.manager_type not in MANAGER_ENDPOINTS:
            raise ConfigurationError(
                f"Unknown manager type '{self.manager_type}'. "
                f"Expected one of: {', '.join(sorted(MANAGER_ENDPOINTS))}",
                details={"manager_type": self.manager_type},
            )

        base_url, scope = MANAGER_ENDPOINTS[self.manager_type]
        # frozen dataclass: derived defaults are set through object.__setattr__
        if not self.api_base_url:
            object.__setattr__(self, "api_base_url", base_url)
        object.__setattr__(self, "api_base_url", self.api_base_url.rstrip("/"))
        if not self.scope:
            object.__setattr__(self, "scope", scope)

    @classmethod
    def from_env(
        cls,
        manager_type: Optional[str] = None,
        client_id: Optional[str] = None,
        client_assertion: Optional[str] = None,
        output_dir: Optional[str] = None,
    ) -> "ABMConfig":
        """Build the configuration from explicit values and the environment.

        Explicit arguments win over environment variables.

        Raises:
            ConfigurationError: If required values are missing or invalid.
        """
        manager_type = (manager_type or os.getenv("ABM_MANAGER_TYPE", "")).strip().lower()
        client_id = client_id or os.getenv("ABM_CLIENT_ID")
        client_assertion = client_assertion or os.getenv("ABM_CLIENT_ASSERTION")

        if not client_assertion:
            assertion_file = os.getenv("ABM_CLIENT_ASSERTION_FILE")
            if assertion_file:
                client_assertion = _read_assertion_file(assertion_file)

        missing = []
        if not manager_type:
            missing.append("ABM_MANAGER_TYPE")
        if not client_id:
            missing.append("ABM_CLIENT_ID")
        if not client_assertion:
            missing.append("ABM_CLIENT_ASSERTION")
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing_keys=missing,
            )

        config = cls(
            manager_type=manager_type,
            client_id=client_id,
            client_assertion=client_assertion.strip(),
            api_base_url=os.getenv("ABM_BASE_URL", ""),
            token_url=os.getenv("ABM_TOKEN_URL") or TOKEN_URL,
            output_dir=Path(output_dir or os.getenv("ABM_OUTPUT_DIR", ".")).expanduser(),
            pagination=PaginationConfig(
                page_size=DEVICES_PAGINATION.page_size,
                delay_between_pages=_env_float("ABM_PAGE_DELAY", 0.2),
            ),
            retry_policy=RetryPolicy(
                max_attempts=_env_int("ABM_MAX_ATTEMPTS", 5),
                backoff_unit=_env_float("ABM_BACKOFF_UNIT", 3.0),
                item_delay=_env_float("ABM_ITEM_DELAY", 1.0),
            ),
            monitor_policy=MonitorPolicy(
                interval=_env_float("ABM_POLL_INTERVAL", 5.0),
                max_checks=_env_int("ABM_MAX_CHECKS", 60),
            ),
        )
        logger.debug(
            f"Configured for Apple {config.manager_type} manager "
            f"(api={config.api_base_url}, scope={config.scope})"
        )
        return config


# ============================================
# Helpers
# ============================================

def _read_assertion_file(path: str) -> str:
    assertion_path = Path(path).expanduser()
    if not assertion_path.is_file():
        raise ConfigurationError(
            f"Client assertion file not found: {assertion_path}",
            details={"path": str(assertion_path)},
        )
    return assertion_path.read_text().strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}",
            details={"variable": name},
            cause=e,
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            details={"variable": name},
            cause=e,
        )
