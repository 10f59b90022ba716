"""Validation and runtime guardrails."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from .errors import ConfigError

EMAIL_REGEX = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")
POSTCODE_WIDTH = 4


def is_supported_url(url: str) -> bool:
    """Allow only absolute HTTP(S) URLs with a hostname."""
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def is_valid_email(value: str | None) -> bool:
    """Return True when the whole value is a syntactically valid address."""
    if not value:
        return False
    return EMAIL_REGEX.fullmatch(value.strip()) is not None


def normalize_postcode(value: str | int) -> str:
    """Normalize a postcode to its zero-padded four digit form."""
    text = str(value).strip()
    if not text.isdigit() or len(text) > POSTCODE_WIDTH:
        raise ConfigError(f"Invalid postcode: {value!r}")
    return text.zfill(POSTCODE_WIDTH)


def validate_runtime_constraints(
    *,
    output: str,
    search_url: str,
    batch_size: int,
    delay_between_units_ms: int,
    navigation_attempts: int,
    navigation_retry_delay_ms: int,
    max_load_more_clicks: int,
) -> None:
    """Validate CLI/runtime configuration and raise ConfigError on invalid values."""
    if not output.strip():
        raise ConfigError("--output must not be empty.")
    if not is_supported_url(search_url):
        raise ConfigError(f"Search URL must be an absolute http(s) URL: {search_url!r}")
    if batch_size < 1:
        raise ConfigError("--batch-size must be >= 1.")
    if delay_between_units_ms < 0 or navigation_retry_delay_ms < 0:
        raise ConfigError("Delays must be >= 0.")
    if navigation_attempts < 1:
        raise ConfigError("Navigation attempts must be >= 1.")
    if max_load_more_clicks < 1:
        raise ConfigError("Load More click cap must be >= 1.")
