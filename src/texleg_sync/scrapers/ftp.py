"""Bill history fetcher for the Texas Legislature FTP server.

Layout on ``ftp.legis.state.tx.us``::

    /bills/89R/billhistory/house_bills/HB00001_HB00099/HB 1.xml
    /bills/89R/billhistory/senate_bills/SB00100_SB00198/SB 150.xml

Bill numbers are grouped into fixed-size directory buckets.  The bucket for a
number must be computed exactly: an off-by-one silently fetches the wrong
directory and turns every bill in it into a false "not found".

The client keeps one control connection open between documents, reconnects
after it has been idle for ``idle_timeout`` seconds, and throws the
connection away after any transport failure so the next call starts fresh.
"""

from __future__ import annotations

import ftplib
import io
import logging
import posixpath
import re
import time
from collections.abc import Callable

from ..config import BUCKET_SIZE, FTP_HOST, FTP_IDLE_TIMEOUT, FTP_TIMEOUT, SESSION_CODE
from ..errors import RemoteFetchError, RemoteNotFound

LOGGER = logging.getLogger(__name__)

# FTP reply code for "file unavailable"
_NOT_FOUND_CODE = "550"

_HOUSE_TYPES = frozenset({"HB", "HJR", "HCR"})

_RE_BILL_FILE = re.compile(r"(\d+)\.xml$", re.IGNORECASE)

# Anything else is an error page or a truncated transfer.
_HISTORY_MARKERS = (b"<?xml", b"<billhistory", b"<BillHistory")


# ── Bucket arithmetic ────────────────────────────────────────────────────────


def compute_bucket(bill_number: int, bucket_size: int = BUCKET_SIZE) -> tuple[int, int]:
    """Return the inclusive ``(start, end)`` range of the bucket holding *bill_number*.

    >>> compute_bucket(1)
    (1, 99)
    >>> compute_bucket(99)
    (1, 99)
    >>> compute_bucket(100)
    (100, 198)
    """
    if bill_number < 1:
        raise ValueError(f"bill_number must be >= 1, got {bill_number}")
    if bucket_size < 1:
        raise ValueError(f"bucket_size must be >= 1, got {bucket_size}")
    start = (bill_number - 1) // bucket_size * bucket_size + 1
    return start, start + bucket_size - 1


def bucket_dirname(bill_type: str, bill_number: int, bucket_size: int = BUCKET_SIZE) -> str:
    """``("HB", 150)`` → ``"HB00100_HB00198"``."""
    bt = bill_type.upper()
    start, end = compute_bucket(bill_number, bucket_size)
    return f"{bt}{start:05d}_{bt}{end:05d}"


def bill_type_folder(bill_type: str) -> str:
    """House measures live under ``house_bills``; everything else under ``senate_bills``."""
    return "house_bills" if bill_type.upper() in _HOUSE_TYPES else "senate_bills"


def history_root(session_code: str, bill_type: str) -> str:
    return f"/bills/{session_code}/billhistory/{bill_type_folder(bill_type)}"


def history_path(
    session_code: str,
    bill_type: str,
    bill_number: int,
    bucket_size: int = BUCKET_SIZE,
) -> str:
    """Full remote path of one bill history document."""
    bt = bill_type.upper()
    return (
        f"{history_root(session_code, bt)}/"
        f"{bucket_dirname(bt, bill_number, bucket_size)}/{bt} {bill_number}.xml"
    )


def looks_like_history(payload: bytes) -> bool:
    head = payload[:512]
    return any(marker in head for marker in _HISTORY_MARKERS)


def _is_not_found(exc: ftplib.Error) -> bool:
    return str(exc).startswith(_NOT_FOUND_CODE)


# ── Client ───────────────────────────────────────────────────────────────────


class FtpHistoryClient:
    """Reusable FTP connection for bill history documents.

    Usage::

        with FtpHistoryClient() as client:
            raw = client.fetch_history_document("HB", 1)
    """

    def __init__(
        self,
        host: str = FTP_HOST,
        session_code: str = SESSION_CODE,
        timeout: float = FTP_TIMEOUT,
        idle_timeout: float = FTP_IDLE_TIMEOUT,
        bucket_size: int = BUCKET_SIZE,
        ftp_factory: Callable[..., ftplib.FTP] = ftplib.FTP,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.host = host
        self.session_code = session_code
        self.timeout = timeout
        self.idle_timeout = idle_timeout
        self.bucket_size = bucket_size
        self._ftp_factory = ftp_factory
        self._clock = clock
        self._ftp: ftplib.FTP | None = None
        self._last_used = 0.0

    def __enter__(self) -> FtpHistoryClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Connection management ──

    def _connection(self) -> ftplib.FTP:
        now = self._clock()
        if self._ftp is not None and now - self._last_used < self.idle_timeout:
            self._last_used = now
            return self._ftp
        if self._ftp is not None:
            LOGGER.debug("FTP connection idle for %.0fs, reconnecting", now - self._last_used)
            self.close()
        LOGGER.debug("Connecting to ftp://%s", self.host)
        ftp = self._ftp_factory(self.host, timeout=self.timeout)
        ftp.login()
        self._ftp = ftp
        self._last_used = now
        return ftp

    def close(self) -> None:
        """Quit the control connection; falls back to a hard close."""
        ftp, self._ftp = self._ftp, None
        if ftp is None:
            return
        try:
            ftp.quit()
        except (ftplib.Error, OSError, EOFError):
            ftp.close()

    # ── Documents ──

    def fetch_history_document(self, bill_type: str, bill_number: int) -> bytes:
        """Download one bill history document.

        Raises
        ------
        RemoteNotFound
            The server answered 550: no document for this number (a gap).
        RemoteFetchError
            Any other FTP or socket failure, or a payload that is not a bill
            history document.
        """
        path = history_path(self.session_code, bill_type, bill_number, self.bucket_size)
        buf = io.BytesIO()
        try:
            ftp = self._connection()
            ftp.retrbinary(f"RETR {path}", buf.write)
        except ftplib.error_perm as exc:
            if _is_not_found(exc):
                raise RemoteNotFound(f"No document at {path}") from exc
            self.close()
            raise RemoteFetchError(f"FTP refused {path}: {exc}") from exc
        except (ftplib.Error, OSError, EOFError) as exc:
            self.close()
            raise RemoteFetchError(f"FTP transfer of {path} failed: {exc}") from exc

        payload = buf.getvalue()
        if not looks_like_history(payload):
            raise RemoteFetchError(f"Unexpected payload at {path} ({len(payload)} bytes)")
        return payload

    # ── Listings ──

    def _list(self, path: str) -> list[str]:
        try:
            names = self._connection().nlst(path)
        except ftplib.error_perm as exc:
            # Some servers answer an empty directory with "550 No files found".
            if _is_not_found(exc):
                return []
            self.close()
            raise RemoteFetchError(f"FTP refused listing of {path}: {exc}") from exc
        except (ftplib.Error, OSError, EOFError) as exc:
            self.close()
            raise RemoteFetchError(f"FTP listing of {path} failed: {exc}") from exc
        return [posixpath.basename(name.rstrip("/")) for name in names]

    def list_bucket_dirs(self, bill_type: str) -> list[str]:
        """Bucket directories for *bill_type*, lowest range first."""
        bt = bill_type.upper()
        pattern = re.compile(rf"^{bt}\d{{5}}_{bt}\d{{5}}$")
        names = self._list(history_root(self.session_code, bt))
        return sorted(name for name in names if pattern.match(name))

    def list_bill_numbers(self, bill_type: str, dirname: str) -> list[int]:
        """Bill numbers with a document in one bucket directory, ascending."""
        names = self._list(f"{history_root(self.session_code, bill_type)}/{dirname}")
        numbers: list[int] = []
        for name in names:
            m = _RE_BILL_FILE.search(name)
            if m:
                numbers.append(int(m.group(1)))
        return sorted(numbers)

    def find_last_bill_number(self, bill_type: str) -> int:
        """Highest filed bill number for *bill_type*, or ``0`` when none are filed.

        Walks the buckets from the top down and stops at the first non-empty one.
        """
        for dirname in reversed(self.list_bucket_dirs(bill_type)):
            numbers = self.list_bill_numbers(bill_type, dirname)
            if numbers:
                LOGGER.info("Last %s on the server: %d (%s)", bill_type, numbers[-1], dirname)
                return numbers[-1]
        LOGGER.info("No %s documents on the server for %s", bill_type, self.session_code)
        return 0

    def scan_available_bills(self, bill_type: str) -> list[int]:
        """Every bill number with a document, across all buckets.

        A bucket that fails to list is logged and skipped.
        """
        numbers: list[int] = []
        for dirname in self.list_bucket_dirs(bill_type):
            try:
                numbers.extend(self.list_bill_numbers(bill_type, dirname))
            except RemoteFetchError as exc:
                LOGGER.warning("Skipping bucket %s: %s", dirname, exc)
        return sorted(numbers)
