"""Runtime configuration model."""

from __future__ import annotations

from dataclasses import dataclass

from .validation import normalize_postcode, validate_runtime_constraints

DEFAULT_SEARCH_URL = "https://www.charteredaccountantsanz.com/find-a-ca"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.6 Safari/605.1.15"
)
DEFAULT_OUTPUT = "ca_members_all_australia.json"
DEFAULT_BATCH_SIZE = 10
DEFAULT_DELAY_BETWEEN_UNITS_MS = 5000
DEFAULT_NAVIGATION_ATTEMPTS = 3
DEFAULT_NAVIGATION_RETRY_DELAY_MS = 5000
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000
DEFAULT_PAGE_SETTLE_MS = 5000
DEFAULT_SEARCH_SETTLE_MS = 8000
DEFAULT_LOAD_MORE_SETTLE_MS = 4000
DEFAULT_MAX_LOAD_MORE_CLICKS = 50


@dataclass(frozen=True)
class RunConfig:
    """Validated configuration for one scrape run."""

    output: str = DEFAULT_OUTPUT
    batch_size: int = DEFAULT_BATCH_SIZE
    delay_between_units_ms: int = DEFAULT_DELAY_BETWEEN_UNITS_MS
    resume_from: str | None = None
    save_progress: bool = True
    checkpoint_path: str | None = None
    search_url: str = DEFAULT_SEARCH_URL
    navigation_attempts: int = DEFAULT_NAVIGATION_ATTEMPTS
    navigation_retry_delay_ms: int = DEFAULT_NAVIGATION_RETRY_DELAY_MS
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    page_settle_ms: int = DEFAULT_PAGE_SETTLE_MS
    search_settle_ms: int = DEFAULT_SEARCH_SETTLE_MS
    load_more_settle_ms: int = DEFAULT_LOAD_MORE_SETTLE_MS
    max_load_more_clicks: int = DEFAULT_MAX_LOAD_MORE_CLICKS
    headless: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    screenshot_dir: str | None = None
    show_progress: bool = True

    def __post_init__(self) -> None:
        validate_runtime_constraints(
            output=self.output,
            search_url=self.search_url,
            batch_size=self.batch_size,
            delay_between_units_ms=self.delay_between_units_ms,
            navigation_attempts=self.navigation_attempts,
            navigation_retry_delay_ms=self.navigation_retry_delay_ms,
            max_load_more_clicks=self.max_load_more_clicks,
        )
        if self.resume_from is not None:
            # frozen dataclass: normalize through object.__setattr__
            object.__setattr__(self, "resume_from", normalize_postcode(self.resume_from))
