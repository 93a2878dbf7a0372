from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import secrets
import threading
from typing import Callable, Optional

from burnlink.datamodels import FileRecord, FileView, RecordState, StoreStatus
from burnlink.errors import AlreadyConsumed, Expired, InvalidInput, NotFound, PayloadTooLarge
from burnlink.tables import BaseTable, MemoryTable, RecordTable

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_MIME_TYPE = "application/octet-stream"
# 24 random bytes -> 32 url safe characters
TOKEN_BYTES = 24


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def short_token(token: str) -> str:
    return token[:8] + "..."


class OneTimeFileStore:
    """
    File blobs keyed by an unguessable token, each downloadable exactly once.

    Every operation runs load -> check -> mutate -> save under one lock, on a copy of
    the table, and nothing is committed unless the table save succeeds. That makes the
    check-and-flip in `take` atomic: of any number of concurrent takes for one token
    only one observes it available.

    Example:
        >>> store = OneTimeFileStore()
        >>> token = store.put(b"hello", "a.txt", "text/plain")
        >>> store.take(token).payload
        b'hello'
        >>> store.take(token)
        Traceback (most recent call last):
        ...
        burnlink.errors.AlreadyConsumed: ...
    """

    def __init__(
        self,
        table: Optional[BaseTable] = None,
        ttl: timedelta = DEFAULT_TTL,
        max_size: Optional[int] = None,
        reap_on_put: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            table: Backing table. Defaults to an in-memory table
            ttl: Age after which an unconsumed record counts as expired
            max_size: Largest accepted payload in bytes, None or 0 for no limit
            reap_on_put: Sweep expired and consumed records on every put
            clock: Returns the current time as an aware datetime
        """
        self.table = table or MemoryTable()
        self.ttl = ttl
        self.max_size = max_size
        self.reap_on_put = reap_on_put
        self.clock = clock
        self._lock = threading.Lock()

    def put(self, payload: bytes, file_name: Optional[str] = None, mime_type: Optional[str] = None) -> str:
        """
        Store a payload and return the token for its one download.

        Raises:
            InvalidInput: payload is empty
            PayloadTooLarge: payload is over `max_size`
            IOFailure: the table could not be read or written, nothing was stored
        """
        if not payload:
            raise InvalidInput("No file data received")
        if self.max_size and len(payload) > self.max_size:
            raise PayloadTooLarge(f"File is {len(payload)} bytes, the limit is {self.max_size} bytes")

        with self._lock:
            records = self.table.load()
            now = self.clock()

            if self.reap_on_put:
                self._sweep(records, now, self.ttl)

            token = self._new_token(records)
            records[token] = FileRecord(
                token=token,
                file_name=file_name or f"file-{token}",
                payload=payload,
                size=len(payload),
                mime_type=mime_type or DEFAULT_MIME_TYPE,
                created_at=now,
            )
            self.table.save(records)

        logger.info(
            "File uploaded: %s (%s) - %d bytes, %d files in storage",
            records[token].file_name, short_token(token), len(payload), len(records),
        )
        return token

    def take(self, token: str) -> FileView:
        """
        Hand out the file for `token` once.

        A record found consumed or expired is deleted on the spot, so asking again
        after that gives NotFound.

        Raises:
            NotFound: no record for the token
            Expired: the record aged past the ttl, it is deleted
            AlreadyConsumed: the file was already taken, the record is deleted
            IOFailure: the table could not be read or written, the record is unchanged
        """
        with self._lock:
            records = self.table.load()
            record = records.get(token)
            if record is None:
                logger.info("File not found: %s", short_token(token))
                raise NotFound("File not found or link has expired")

            now = self.clock()
            if record.is_expired(now, self.ttl):
                del records[token]
                self.table.save(records)
                logger.info("File expired: %s", short_token(token))
                raise Expired("File not found or link has expired")

            if record.state is RecordState.CONSUMED:
                del records[token]
                self.table.save(records)
                logger.info("File already downloaded: %s", short_token(token))
                raise AlreadyConsumed("This file has already been downloaded and the link has expired")

            records[token] = record.consume(now)
            self.table.save(records)

        logger.info("File downloaded: %s (%s)", record.file_name, short_token(token))
        return record.view()

    def peek_status(self, token: str) -> Optional[RecordState]:
        """Effective state of a record without touching it, None when there is none."""
        with self._lock:
            record = self.table.load().get(token)
        if record is None:
            return None
        if record.is_expired(self.clock(), self.ttl):
            return RecordState.EXPIRED
        return record.state

    def reap(self, now: Optional[datetime] = None, ttl: Optional[timedelta] = None) -> int:
        """
        Delete every record older than `ttl` or no longer available.

        Returns:
            int: number of records removed
        """
        with self._lock:
            records = self.table.load()
            removed = self._sweep(records, now or self.clock(), ttl if ttl is not None else self.ttl)
            if removed:
                self.table.save(records)

        if removed:
            logger.info("Reaped %d files, %d left", removed, len(records))
        return removed

    def status(self) -> StoreStatus:
        with self._lock:
            records = self.table.load()
        return StoreStatus(count=len(records), tokens=list(records))

    @staticmethod
    def _sweep(records: RecordTable, now: datetime, ttl: timedelta) -> int:
        stale = [
            token for token, record in records.items()
            if record.state is not RecordState.AVAILABLE or record.is_expired(now, ttl)
        ]
        for token in stale:
            del records[token]
        return len(stale)

    @staticmethod
    def _new_token(records: RecordTable) -> str:
        token = secrets.token_urlsafe(TOKEN_BYTES)
        while token in records:
            token = secrets.token_urlsafe(TOKEN_BYTES)
        return token
