"""Storage ports: the object store and the reference store.

Each port has one in-memory implementation (:mod:`cts_core.memory`) and a
persistent one per side: :mod:`cts_core.disk` on the client and
``repo_app.stores`` on the server. Everything above this layer depends
only on these interfaces.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Iterator, List, Optional, Set, Tuple

from . import codec
from .errors import HashMismatch, InvalidInput, ObjectNotFound, ReferenceNotFound
from .objects import check_digest

logger = logging.getLogger(__name__)

HEADS_PREFIX = "refs/heads/"
TAGS_PREFIX = "refs/tags/"
BRANCH = "branch"
TAG = "tag"

_BAD_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def validate_ref_name(name: str) -> str:
    if not isinstance(name, str) or not name.startswith((HEADS_PREFIX, TAGS_PREFIX)):
        raise InvalidInput(f"invalid reference name: {name!r}", field="ref")
    for segment in name.split("/"):
        if (not segment or segment in (".", "..") or segment.endswith(".lock")
                or segment.startswith(".") or _BAD_REF_CHARS.search(segment)):
            raise InvalidInput(f"invalid reference name: {name!r}", field="ref")
    return name


def ref_kind(name: str) -> str:
    return TAG if name.startswith(TAGS_PREFIX) else BRANCH


def branch_ref(branch: str) -> str:
    if branch.startswith(HEADS_PREFIX):
        return validate_ref_name(branch)
    return validate_ref_name(HEADS_PREFIX + branch)


def tag_ref(tag: str) -> str:
    if tag.startswith(TAGS_PREFIX):
        return validate_ref_name(tag)
    return validate_ref_name(TAGS_PREFIX + tag)


def short_ref(name: str) -> str:
    for prefix in (HEADS_PREFIX, TAGS_PREFIX):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


class ObjectStore(ABC):
    """Content-addressed, deduplicated, append-only object storage.

    Subclasses provide raw access (``_load``/``_store``/``_exists``); the
    hashing, dedup and collision guard live here so every backend
    enforces them the same way.
    """

    def __init__(self, hash_fn: Callable[[bytes], str] = codec.hash_bytes) -> None:
        self.hash_fn = hash_fn

    @abstractmethod
    def _load(self, digest: str) -> Optional[bytes]:
        """Return the stored bytes for *digest*, or None."""

    @abstractmethod
    def _store(self, digest: str, kind: str, data: bytes) -> bytes:
        """Persist *data* atomically unless *digest* already exists.

        Returns whatever is stored under *digest* afterwards, so a racing
        writer's payload can be compared against ours.
        """

    @abstractmethod
    def __iter__(self) -> Iterator[str]:
        ...

    def _exists(self, digest: str) -> bool:
        return self._load(digest) is not None

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __contains__(self, digest) -> bool:
        return self.contains(digest)

    def put(self, data: bytes, digest: Optional[str] = None) -> str:
        data = bytes(data)
        actual = self.hash_fn(data)
        if digest is not None and digest != actual:
            raise HashMismatch(digest, actual)
        kind, _ = codec.read_header(data, actual)
        existing = self._load(actual)
        if existing is None:
            existing = self._store(actual, kind, data)
            logger.debug("stored %s %s (%d bytes)", kind, actual, len(data))
        if existing != data:
            raise HashMismatch(actual)
        return actual

    def get(self, digest: str) -> bytes:
        data = self._load(digest)
        if data is None:
            raise ObjectNotFound(digest)
        return data

    def contains(self, digest: str) -> bool:
        return self._exists(digest)

    def missing(self, candidates: Iterable[str]) -> Set[str]:
        return {digest for digest in set(candidates) if not self.contains(digest)}

    def put_object(self, obj) -> str:
        return self.put(codec.encode(obj))

    def get_object(self, digest: str, expected_kind: Optional[str] = None):
        return codec.decode(self.get(digest), expected_kind, digest=digest)


class RefStore(ABC):
    """Named pointers to commit digests; compare_and_set is the only mutator."""

    @abstractmethod
    def _get(self, name: str) -> Optional[str]:
        ...

    @abstractmethod
    def compare_and_set(self, name: str, expected_old: Optional[str], new: str) -> None:
        """Point *name* at *new* if it currently equals *expected_old*.

        ``expected_old=None`` means the reference must not exist yet.
        Raises :class:`~cts_core.errors.RefConflict` carrying the actual
        value otherwise.
        """

    @abstractmethod
    def list(self) -> List[Tuple[str, str]]:
        ...

    def read(self, name: str) -> str:
        target = self._get(validate_ref_name(name))
        if target is None:
            raise ReferenceNotFound(name)
        return target

    def read_or_none(self, name: str) -> Optional[str]:
        return self._get(validate_ref_name(name))

    def _check_update(self, name: str, new: str) -> None:
        validate_ref_name(name)
        check_digest(new, "new")

    def _check_namespace(self, name: str) -> None:
        # refs/heads/a and refs/heads/a/b cannot both exist
        for existing, _ in self.list():
            if existing.startswith(name + "/") or name.startswith(existing + "/"):
                raise InvalidInput(f"reference {name!r} conflicts with existing {existing!r}", field="ref")
