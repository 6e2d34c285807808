"""Bill text fetcher: downloads the HTML bill text referenced by a history document.

The history XML points at pages like
``https://capitol.texas.gov/tlodocs/89R/billtext/html/HB00001I.HTM``.  The
page is reduced to plain text with :func:`~texleg_sync.normalize.html_to_text`.

A missing bill text is never an error for the sync: every failure mode here
returns ``None`` and the bill is stored without content.
"""

from __future__ import annotations

import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_TIMEOUT, USER_AGENT
from ..normalize import html_to_text

LOGGER = logging.getLogger(__name__)

# Shorter than this is a stub page, not a bill.
MIN_TEXT_CHARS = 100
MAX_TEXT_CHARS = 50_000

_ERROR_PAGE_MARKERS = ("Website Error", "Page Not Found")


def build_session(user_agent: str = USER_AGENT) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=5, pool_maxsize=5)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = user_agent
    return session


def fetch_full_text(
    url: str,
    session: requests.Session | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> str | None:
    """Fetch and clean the bill text at *url*.

    Returns
    -------
    str or None
        Plain text capped at :data:`MAX_TEXT_CHARS`, or ``None`` on a non-200
        response, a request failure, a legislature error page, or a page with
        less than :data:`MIN_TEXT_CHARS` of text.
    """
    if not url:
        return None
    sess = session or build_session()

    try:
        resp = sess.get(url, timeout=timeout)
    except requests.RequestException as exc:
        LOGGER.warning("Failed to fetch bill text %s: %s", url, exc)
        return None

    if resp.status_code != 200:
        LOGGER.debug("Bill text %s returned HTTP %d", url, resp.status_code)
        return None

    html = resp.text
    if any(marker in html for marker in _ERROR_PAGE_MARKERS):
        LOGGER.debug("Bill text %s is an error page", url)
        return None

    text = html_to_text(html)
    if len(text) <= MIN_TEXT_CHARS:
        return None
    return text[:MAX_TEXT_CHARS]
