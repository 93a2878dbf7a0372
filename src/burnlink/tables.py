from __future__ import annotations

from abc import ABC, abstractmethod
import contextlib
import logging
import os
from pathlib import Path
import tempfile

from pydantic import TypeAdapter, ValidationError

from burnlink.datamodels import FileRecord
from burnlink.errors import IOFailure

logger = logging.getLogger(__name__)

RecordTable = dict[str, FileRecord]

_TABLE_ADAPTER = TypeAdapter(RecordTable)


class BaseTable(ABC):
    """
    Backing storage for the records of a one-time store.

    The store always works whole-table: `load` a copy, change it, `save` it back.
    Implementations must not let a failed `save` change what the next `load` returns.
    """

    @abstractmethod
    def load(self) -> RecordTable:
        """Return a copy of the committed records, safe to mutate."""
        ...

    @abstractmethod
    def save(self, records: RecordTable) -> None:
        """
        Commit the records.

        Raises:
            IOFailure: when the records could not be committed. The previous
                committed state is left intact.
        """
        ...


class MemoryTable(BaseTable):

    def __init__(self) -> None:
        self._records: RecordTable = {}

    def load(self) -> RecordTable:
        return dict(self._records)

    def save(self, records: RecordTable) -> None:
        self._records = dict(records)


class JsonFileTable(BaseTable):
    """
    Records kept in a single JSON file keyed by token.

    Writes go to a temp file in the same directory which is then renamed over the
    target, so a failed write never truncates the existing table.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> RecordTable:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.exception("Error reading storage file %s", self.path)
            raise IOFailure(f"Can't read storage: {e}") from e

        if not raw.strip():
            return {}

        try:
            return _TABLE_ADAPTER.validate_json(raw)
        except ValidationError as e:
            logger.error("Storage file %s is malformed: %s", self.path, e)
            raise IOFailure(f"Storage file is malformed: {self.path}") from e

    def save(self, records: RecordTable) -> None:
        data = _TABLE_ADAPTER.dump_json(records, by_alias=True, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write_atomic(data)
        except OSError as e:
            logger.exception("Error writing storage file %s", self.path)
            raise IOFailure(f"Can't write storage: {e}") from e

    def _write_atomic(self, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
