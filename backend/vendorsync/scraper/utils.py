"""Scraper utility functions: user-agent rotation, delays, retries, identifiers."""

import asyncio
import hashlib
import random
import re
from typing import Any, Tuple, Type

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/18.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36 Edg/130.0.0.0",
]

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]+")


def get_random_user_agent() -> str:
    """Return a random user-agent string."""
    return random.choice(USER_AGENTS)


async def random_delay(min_seconds: float = 0.1, max_seconds: float = 0.5) -> None:
    """Sleep for a random duration between min and max seconds."""
    if max_seconds <= 0:
        return
    delay = random.uniform(min_seconds, max_seconds)
    await asyncio.sleep(delay)


async def retry_with_backoff(
    coro_func,
    *args,
    max_retries: int = 3,
    base_delay: float = 2.0,
    jitter: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs,
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        coro_func: The async function to call.
        max_retries: Maximum number of attempts.
        base_delay: Delay before the second attempt; doubles each time.
        jitter: Upper bound of the random seconds added to each delay.
        retry_on: Exception types that trigger another attempt. Anything
            else propagates immediately.

    Returns:
        The result of the coroutine. The last exception is re-raised once
        all attempts are used.
    """
    last_exception = None
    for attempt in range(max_retries):
        try:
            return await coro_func(*args, **kwargs)
        except retry_on as e:
            last_exception = e
            if attempt < max_retries - 1:
                wait = base_delay * (2 ** attempt)
                if jitter:
                    wait += random.uniform(0, jitter)
                await asyncio.sleep(wait)
    raise last_exception


def sanitize_identifier(value: str) -> str:
    """Collapse every run of non-alphanumeric characters into a single '-'."""
    return _NON_ALNUM_RE.sub("-", value).strip("-")


def synthesize_vin(prefix: str, seed: str) -> str:
    """Stable 17-character stand-in VIN derived from a stock number or page URL."""
    digest = hashlib.sha1(seed.encode("utf-8")).hexdigest().upper()
    head = sanitize_identifier(prefix).replace("-", "").upper()[:5]
    return (head + digest)[:17]


def synthesize_stock_number(prefix: str, source_url: str) -> str:
    """Stable stock number derived from the detail page URL."""
    digest = hashlib.sha1(source_url.encode("utf-8")).hexdigest().upper()
    return f"{sanitize_identifier(prefix).upper()}-{digest[:8]}"
