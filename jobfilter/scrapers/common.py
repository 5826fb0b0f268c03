"""Shared utilities for posting sources."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests

from ..errors import ScrapeError
from ..logger import get_logger
from ..models import Posting
from ..retry import RetryError, exponential_backoff
from ..schema import validate_posting


class Scraper(ABC):
    """Produces the postings of one named source.

    Freshness (for example reusing today's scrape) is the scraper's own
    business; callers only see the resulting list.
    """

    requires_urls = False

    @abstractmethod
    def list_postings(self, source_id: str, urls: Sequence[str] = ()) -> List[Posting]:
        raise NotImplementedError

    def close(self) -> None:
        """Release held connections. Sources without any keep the default."""


@exponential_backoff(
    max_retries=3,
    base_delay=1.0,
    exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError),
)
def _request_with_retry(session: requests.Session, method: str, url: str, **kwargs):
    """Issue a request with automatic retry on transient network errors."""
    kwargs.setdefault("timeout", 30)
    return session.request(method, url, **kwargs)


def request_with_error_handling(
    session: requests.Session, method: str, url: str, platform: str, **kwargs
):
    """Issue a request with standardized error handling and logging.

    Returns:
        Response object on success

    Raises:
        ScrapeError: On any HTTP error, exhausted retries, or request failure
    """
    logger = get_logger()
    try:
        resp = _request_with_retry(session, method, url, **kwargs)
        resp.raise_for_status()
        return resp
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else "HTTPError"
        if status == 404:
            logger.warning(f"{platform.capitalize()} resource not found", url=url, status=404)
            raise ScrapeError(f"{platform.capitalize()} resource not found (404): {url}")
        logger.error(f"{platform.capitalize()} request failed", url=url, status=status)
        raise ScrapeError(f"{platform.capitalize()} request failed ({status}): {url}")
    except RetryError as e:
        logger.warning(f"{platform.capitalize()} request kept failing", url=url, error=str(e))
        raise ScrapeError(f"{platform.capitalize()} request failed after retries. Try again later.")
    except requests.exceptions.RequestException as e:
        logger.error(f"{platform.capitalize()} request error", url=url, error=str(e))
        raise ScrapeError(f"{platform.capitalize()} request error: {e}")


def decode_json(resp: requests.Response, platform: str, expected: type):
    """Decode a JSON response body and check its top-level type.

    Raises:
        ScrapeError: When the body is not JSON or not an ``expected`` value
    """
    try:
        data = resp.json()
    except ValueError:
        get_logger().error(
            f"{platform.capitalize()} returned a non-JSON body",
            url=resp.url,
            status=resp.status_code,
            body=resp.text[:200],
        )
        raise ScrapeError(f"{platform.capitalize()} returned a non-JSON response: {resp.url}")
    if not isinstance(data, expected):
        get_logger().error(
            f"{platform.capitalize()} returned an unexpected payload",
            url=resp.url,
            expected=expected.__name__,
            got=type(data).__name__,
        )
        raise ScrapeError(
            f"{platform.capitalize()} returned {type(data).__name__} where {expected.__name__} was expected: {resp.url}"
        )
    return data


def parse_postings(items: Iterable[Dict[str, Any]], source_id: Optional[str] = None) -> List[Posting]:
    """Validate raw items into postings.

    Invalid items are logged and skipped. Duplicate ids keep their first
    occurrence so identifiers stay unique within a dispatch.
    """
    logger = get_logger()
    seen = set()
    postings = []
    for position, item in enumerate(items):
        errors = validate_posting(item)
        if errors:
            logger.warning("Skipping invalid posting", source=source_id, position=position, errors=errors)
            continue
        posting = Posting.from_dict(item)
        if posting.id in seen:
            logger.debug("Skipping duplicate posting", source=source_id, posting_id=posting.id)
            continue
        seen.add(posting.id)
        postings.append(posting)
    return postings
