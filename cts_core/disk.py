"""Filesystem stores backing the client's ``.cts`` directory."""

import logging
import os
import tempfile
import time
import zlib
from pathlib import Path
from typing import List, Tuple

from .errors import CorruptObject, InvalidInput, RefConflict
from .objects import is_digest
from .store import ObjectStore, RefStore

logger = logging.getLogger(__name__)

COMPRESSION_LEVEL = 6
LOCK_SUFFIX = ".lock"


def atomic_write(path: Path, data: bytes) -> None:
    """Write *data* next to *path* and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class FileObjectStore(ObjectStore):
    """Loose objects under ``objects/<2 hex>/<62 hex>``, zlib-compressed."""

    def __init__(self, root, compression_level: int = COMPRESSION_LEVEL, **kwargs) -> None:
        super().__init__(**kwargs)
        self.root = Path(root)
        self.compression_level = compression_level

    def _path(self, digest):
        return self.root / digest[:2] / digest[2:]

    def _exists(self, digest):
        return is_digest(digest) and self._path(digest).is_file()

    def _load(self, digest):
        if not is_digest(digest):
            return None
        try:
            compressed = self._path(digest).read_bytes()
        except FileNotFoundError:
            return None
        try:
            return zlib.decompress(compressed)
        except zlib.error as exc:
            raise CorruptObject(f"cannot decompress: {exc}", digest)

    def _store(self, digest, kind, data):
        path = self._path(digest)
        if not path.exists():
            atomic_write(path, zlib.compress(data, self.compression_level))
        return self._load(digest)

    def __iter__(self):
        if not self.root.is_dir():
            return
        for shard in sorted(self.root.iterdir()):
            if not shard.is_dir() or len(shard.name) != 2:
                continue
            for entry in sorted(shard.iterdir()):
                digest = shard.name + entry.name
                if is_digest(digest):
                    yield digest


class FileRefStore(RefStore):
    """References as files under ``<root>/refs/...`` holding a digest.

    Updates take ``<ref>.lock`` with O_EXCL, re-read the current value
    under the lock and rename the lock file over the ref.
    """

    def __init__(self, root, lock_timeout: float = 5.0) -> None:
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    def _path(self, name):
        return self.root.joinpath(*name.split("/"))

    def _get(self, name):
        try:
            value = self._path(name).read_text().strip()
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return None
        return value or None

    def _acquire(self, lock_path, name, expected_old):
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                return os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if time.monotonic() >= deadline:
                    logger.warning("timed out waiting for %s", lock_path)
                    raise RefConflict(name, expected_old, self._get(name))
                time.sleep(0.01)

    def compare_and_set(self, name, expected_old, new):
        self._check_update(name, new)
        if expected_old is None:
            self._check_namespace(name)
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as exc:
            raise InvalidInput(f"reference {name!r} conflicts with an existing reference", field="ref") from exc
        lock_path = path.with_name(path.name + LOCK_SUFFIX)
        fd = self._acquire(lock_path, name, expected_old)
        try:
            with os.fdopen(fd, "w") as f:
                current = self._get(name)
                if current != expected_old:
                    raise RefConflict(name, expected_old, current)
                f.write(new + "\n")
                f.flush()
                os.fsync(f.fileno())
            try:
                os.replace(lock_path, path)
            except IsADirectoryError as exc:
                raise InvalidInput(f"reference {name!r} conflicts with an existing reference",
                                   field="ref") from exc
        except BaseException:
            try:
                os.unlink(lock_path)
            except FileNotFoundError:
                pass
            raise

    def list(self) -> List[Tuple[str, str]]:
        refs_dir = self.root / "refs"
        found = []
        if not refs_dir.is_dir():
            return found
        for dirpath, _, filenames in os.walk(refs_dir):
            for filename in filenames:
                if filename.endswith(LOCK_SUFFIX):
                    continue
                rel = Path(dirpath, filename).relative_to(self.root).as_posix()
                target = self._get(rel)
                if target:
                    found.append((rel, target))
        return sorted(found)
