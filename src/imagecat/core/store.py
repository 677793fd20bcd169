"""
Snapshot Store - Load and save the single named snapshot blob.

Every load runs the repair pass, so externally edited or partially corrupted
snapshots heal transparently. A blob that is not JSON at all is a fatal
configuration problem and raises MalformedSnapshot instead.

Backends implement read_blob()/write_blob(); the JSON handling, repair and
logging live in the SnapshotStore base class.
"""

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

import structlog

from ..crawler.slugs import DEFAULT_ORIGIN
from .errors import MalformedSnapshot, StorageUnavailable
from .snapshot import RepairReport, Snapshot, epoch


class SnapshotStore(ABC):
    """
    Persistence for the snapshot singleton.

    Example:
        >>> store = FileSnapshotStore("data/catalog.json")
        >>> snapshot = store.load()
        >>> snapshot.cursor += 1
        >>> store.save(snapshot)
    """

    def __init__(
        self,
        origin: str = DEFAULT_ORIGIN,
        clock: Callable[[], int] = epoch,
    ):
        self.origin = origin
        self._clock = clock
        self.last_repair: Optional[RepairReport] = None
        self.logger = structlog.get_logger(__name__)

    @abstractmethod
    def read_blob(self) -> Optional[str]:
        """
        Return the persisted text, or None if nothing is persisted.

        Raises:
            StorageUnavailable: If the backend cannot be read
        """
        pass

    @abstractmethod
    def write_blob(self, text: str):
        """
        Replace the persisted text in full.

        Raises:
            StorageUnavailable: If the backend cannot be written
        """
        pass

    def load(self) -> Snapshot:
        """
        Load the snapshot, creating and persisting a fresh one if absent.

        Raises:
            StorageUnavailable: If storage fails
            MalformedSnapshot: If the persisted blob cannot be parsed
        """
        text = self.read_blob()
        if text is None:
            snapshot = Snapshot.fresh()
            self.save(snapshot)
            self.last_repair = RepairReport()
            self.logger.info("snapshot_created", backend=self.describe())
            return snapshot

        snapshot, report = self.parse(text)
        self.last_repair = report

        if report.total_dropped:
            self.logger.warning(
                "snapshot_repaired",
                backend=self.describe(),
                **report.to_dict(),
            )

        return snapshot

    def parse(self, text: str) -> Tuple[Snapshot, RepairReport]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            self.logger.error("snapshot_unparsable", backend=self.describe(), error=str(e))
            raise MalformedSnapshot(f"Snapshot is not valid JSON: {e}") from e

        return Snapshot.from_document(data, self.origin)

    def save(self, snapshot: Snapshot):
        """Stamp ``last_updated`` and overwrite the persisted blob"""
        snapshot.last_updated = self._clock()
        self.write_blob(json.dumps(snapshot.to_dict(), ensure_ascii=False))
        self.logger.debug(
            "snapshot_saved",
            backend=self.describe(),
            total=snapshot.total,
            cursor=snapshot.cursor,
        )

    async def aload(self) -> Snapshot:
        """load() on a worker thread so disk I/O stays off the event loop"""
        return await asyncio.to_thread(self.load)

    async def asave(self, snapshot: Snapshot):
        await asyncio.to_thread(self.save, snapshot)

    def describe(self) -> str:
        return type(self).__name__


class FileSnapshotStore(SnapshotStore):
    """Snapshot kept as one JSON file, replaced atomically on every save"""

    def __init__(self, path: Union[str, Path], **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path)

    def read_blob(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise MalformedSnapshot(f"Snapshot {self.path} is not UTF-8 text") from e
        except OSError as e:
            self.logger.error("snapshot_read_failed", path=str(self.path), error=str(e))
            raise StorageUnavailable(f"Cannot read snapshot {self.path}: {e}") from e

    def write_blob(self, text: str):
        # One temp file per writer; loads and saves may run on worker threads
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=self.path.name + ".",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp = Path(f.name)
                f.write(text)
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            self.logger.error("snapshot_write_failed", path=str(self.path), error=str(e))
            raise StorageUnavailable(f"Cannot write snapshot {self.path}: {e}") from e

    def describe(self) -> str:
        return str(self.path)


class MemorySnapshotStore(SnapshotStore):
    """In-process store; ``blob`` holds the persisted text"""

    def __init__(self, blob: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.blob = blob
        self.writes = 0

    def read_blob(self) -> Optional[str]:
        return self.blob

    def write_blob(self, text: str):
        self.blob = text
        self.writes += 1
