"""
LevelDB-backed slot store with staged, all-or-nothing write sets.
"""
import plyvel
import logging
from typing import Optional
from contextlib import contextmanager

import msgpack

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_DELETED = object()


class DB:
    def __init__(self, db_path: str, create_if_missing: bool = True,
                 write_buffer_size: int = 64 * 1024 * 1024,  # 64MB
                 max_open_files: int = 1000,
                 compression: Optional[str] = 'snappy'):
        """
        Open the slot store.

        Args:
            db_path: Path to database directory
            create_if_missing: Create database if it doesn't exist
            write_buffer_size: Size of write buffer
            max_open_files: Maximum number of open files
            compression: LevelDB block compression ('snappy' or None)
        """
        try:
            self._db = plyvel.DB(
                db_path,
                create_if_missing=create_if_missing,
                write_buffer_size=write_buffer_size,
                max_open_files=max_open_files,
                compression=compression,
            )
            self._closed = False
            logger.info(f"State store opened at {db_path}")
        except Exception as e:
            logger.error(f"Failed to open state store at {db_path}: {e}")
            raise

    def _check_open(self):
        if self._closed:
            raise RuntimeError("Database is closed")

    def get(self, key: bytes) -> Optional[bytes]:
        """Raw slot value, or None if the slot is empty."""
        self._check_open()
        return self._db.get(key)

    def put(self, key: bytes, value: bytes):
        self._check_open()
        self._db.put(key, value)

    def delete(self, key: bytes):
        self._check_open()
        self._db.delete(key)

    @contextmanager
    def write_batch(self):
        """
        Context manager for batch writes. The batch is applied only when the
        block exits without an exception.
        """
        self._check_open()

        batch = self._db.write_batch()
        try:
            yield batch
            batch.write()
        except Exception as e:
            logger.error(f"Error in batch write: {e}")
            raise
        finally:
            batch.clear()

    def stage(self) -> 'StagedState':
        return StagedState(self)

    def close(self):
        if not self._closed:
            self._db.close()
            self._closed = True
            logger.info("State store closed")

    @property
    def closed(self) -> bool:
        return self._closed


class StagedState:
    """
    Pending writes layered over the store.

    Reads see pending writes first. ``commit`` flushes them in one write
    batch; ``discard`` drops them and leaves the store untouched.
    """

    def __init__(self, db: DB):
        self.db = db
        self._pending: dict[bytes, object] = {}

    def get(self, key: bytes) -> Optional[bytes]:
        if key in self._pending:
            value = self._pending[key]
            return None if value is _DELETED else value
        return self.db.get(key)

    def put(self, key: bytes, value: bytes):
        self._pending[key] = value

    def delete(self, key: bytes):
        self._pending[key] = _DELETED

    def get_record(self, key: bytes):
        """Unpack a msgpack slot, None if empty."""
        raw = self.get(key)
        if raw is None:
            return None
        return msgpack.unpackb(raw, raw=False)

    def put_record(self, key: bytes, record):
        self.put(key, msgpack.packb(record, use_bin_type=True))

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def commit(self):
        if not self._pending:
            return
        with self.db.write_batch() as batch:
            for key, value in self._pending.items():
                if value is _DELETED:
                    batch.delete(key)
                else:
                    batch.put(key, value)
        logger.debug(f"Committed {len(self._pending)} slot writes")
        self._pending.clear()

    def discard(self):
        self._pending.clear()
