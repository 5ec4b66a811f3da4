"""Utility functions for the transport news pipeline."""

import asyncio
import hashlib
import logging
import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Awaitable, Callable, TypeVar
from urllib.parse import urljoin, urlparse

logger = logging.getLogger(__name__)

T = TypeVar('T')

_QUOTE_CHARS = str.maketrans({
    '“': '"',
    '”': '"',
    '‘': '"',
    '’': '"',
})


def normalize_url(url: str) -> str:
    """Normalize URL for consistent hashing.

    Args:
        url: Raw URL string

    Returns:
        Normalized URL without fragment or trailing slash
    """
    parsed = urlparse(url.strip())
    normalized = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{parsed.path.rstrip('/')}"

    if parsed.query:
        normalized += f"?{parsed.query}"

    return normalized


def extract_domain(url: str) -> str:
    """Extract host from URL, lowercased."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_valid_url(url: str) -> bool:
    """Check if URL has a scheme and host."""
    try:
        result = urlparse(url)
        return all([result.scheme, result.netloc])
    except ValueError:
        return False


def make_absolute_url(url: str | None, base_url: str) -> str | None:
    """Resolve a scraped link against the page it came from.

    Args:
        url: Link as found in the page, possibly relative
        base_url: URL of the page the link was found on

    Returns:
        Absolute URL, or None when the link is empty or malformed
    """
    if not url:
        return None

    url = url.strip()
    try:
        if url.startswith('http'):
            return url

        base = urlparse(base_url)
        if not base.scheme or not base.netloc:
            raise ValueError(f"Base URL is not absolute: {base_url}")

        if url.startswith('//'):
            return f"{base.scheme}:{url}"

        if url.startswith('/'):
            return f"{base.scheme}://{base.netloc}{url}"

        resolved = urljoin(base_url, url)
        if not is_valid_url(resolved):
            raise ValueError(f"Unresolvable link: {url}")
        return resolved

    except ValueError as e:
        logger.warning(f"Invalid URL construction from {url!r} on {base_url}: {e}")
        return None


def generate_content_hash(content: str) -> str:
    """Generate SHA-256 hash of content.

    Args:
        content: Content to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def parse_date_string(date_str: str) -> datetime | None:
    """Parse various date string formats.

    Args:
        date_str: Date string to parse

    Returns:
        Timezone-aware datetime or None if parsing fails
    """
    if not date_str:
        return None

    date_str = date_str.strip()

    try:
        parsed = parsedate_to_datetime(date_str)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    except (ValueError, TypeError):
        pass

    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    except ValueError:
        pass

    formats = [
        "%d/%m/%Y",
        "%B %d, %Y",
        "%b %d, %Y",
        "%d %B %Y",
        "%d %b %Y",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue

    logger.debug(f"Failed to parse date string: {date_str}")
    return None


def clean_text(text: str | None) -> str:
    """Clean scraped text for display and storage.

    Collapses whitespace, straightens curly quotes and expands the
    ellipsis character. Case is preserved.
    """
    if not text:
        return ""

    text = text.translate(_QUOTE_CHARS).replace('…', '...')
    return re.sub(r'\s+', ' ', text).strip()


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    should_retry: Callable[[BaseException], bool] | None = None,
) -> T:
    """Retry async function with exponential backoff.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retries
        backoff_factor: Backoff multiplier
        exceptions: Exceptions to catch and retry
        should_retry: Optional predicate; a caught exception it rejects is raised at once

    Returns:
        Function result

    Raises:
        Last exception if all retries fail
    """
    last_exception: BaseException | None = None

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except exceptions as e:
            last_exception = e
            if should_retry is not None and not should_retry(e):
                raise
            if attempt < max_retries:
                delay = backoff_factor ** attempt
                logger.warning(
                    f"Attempt {attempt + 1}/{max_retries + 1} failed, retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"All {max_retries + 1} attempts failed: {e}")

    assert last_exception is not None
    raise last_exception


def ensure_directory(path: str | Path, mode: int = 0o700) -> Path:
    """Ensure directory exists with secure permissions.

    Args:
        path: Directory path
        mode: Directory permissions

    Returns:
        Path object
    """
    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True, mode=mode)

    try:
        path_obj.chmod(mode)
    except OSError as e:
        logger.warning(f"Failed to set permissions {oct(mode)} on {path_obj}: {e}")

    return path_obj


def utc_now() -> datetime:
    return datetime.now(UTC)
