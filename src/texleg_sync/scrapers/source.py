"""The remote source as seen by the batch processor.

Bundles the FTP client and the HTTP session behind the four calls a batch
needs, so tests can swap in a fake with the same methods.
"""

from __future__ import annotations

import logging

import requests

from ..config import SyncSettings, load_settings
from ..errors import RemoteFetchError
from .ftp import FtpHistoryClient
from .full_text import build_session, fetch_full_text

LOGGER = logging.getLogger(__name__)


class RemoteSource:
    def __init__(
        self,
        settings: SyncSettings | None = None,
        ftp_client: FtpHistoryClient | None = None,
        http_session: requests.Session | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.ftp = ftp_client or FtpHistoryClient(
            host=self.settings.ftp_host,
            session_code=self.settings.session_code,
            timeout=self.settings.ftp_timeout,
            idle_timeout=self.settings.ftp_idle_timeout,
            bucket_size=self.settings.bucket_size,
        )
        self._http = http_session

    @property
    def http(self) -> requests.Session:
        if self._http is None:
            self._http = build_session(self.settings.user_agent)
        return self._http

    def fetch_history_document(self, bill_type: str, bill_number: int) -> bytes:
        return self.ftp.fetch_history_document(bill_type, bill_number)

    def fetch_full_text(self, url: str) -> str | None:
        return fetch_full_text(url, session=self.http, timeout=self.settings.http_timeout)

    def find_last_bill_number(self, bill_type: str) -> int:
        """Highest filed number for *bill_type*.

        If the top-down walk hits a bucket that will not list, falls back to
        scanning every bucket and taking the highest number that did list.
        """
        try:
            return self.ftp.find_last_bill_number(bill_type)
        except RemoteFetchError as exc:
            numbers = self.ftp.scan_available_bills(bill_type)
            if not numbers:
                raise
            LOGGER.warning(
                "Bound walk for %s failed (%s); using full scan, last is %d",
                bill_type,
                exc,
                numbers[-1],
            )
            return numbers[-1]

    def close(self) -> None:
        self.ftp.close()
        if self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self) -> RemoteSource:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
