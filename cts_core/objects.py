"""Immutable object model: blobs, trees and commits.

Objects reference each other only by digest, so the object store is the
arena and nothing here owns a subtree.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

from .errors import InvalidInput

BLOB = "blob"
TREE = "tree"
COMMIT = "commit"
OBJECT_KINDS = (BLOB, TREE, COMMIT)

MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"
MODE_DIRECTORY = "040000"
BLOB_MODES = (MODE_FILE, MODE_EXECUTABLE)

DIGEST_LENGTH = 64
_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def is_digest(value) -> bool:
    return isinstance(value, str) and bool(_DIGEST_RE.match(value))


def check_digest(value, field_name: str = "digest") -> str:
    if not is_digest(value):
        raise InvalidInput(f"invalid digest: {value!r}", field=field_name)
    return value


def check_entry_name(name: str) -> str:
    if not name or name in (".", "..") or "/" in name or "\0" in name:
        raise InvalidInput(f"invalid tree entry name: {name!r}", field="name")
    return name


def _sort_key(entry: "TreeEntry") -> bytes:
    return entry.name.encode("utf-8")


@dataclass(frozen=True)
class Blob:
    data: bytes
    digest: Optional[str] = field(default=None, compare=False, repr=False)

    kind = BLOB

    @property
    def size(self) -> int:
        return len(self.data)

    def references(self) -> Tuple[str, ...]:
        return ()

    def is_text(self) -> bool:
        return b"\0" not in self.data


@dataclass(frozen=True)
class TreeEntry:
    name: str
    kind: str
    digest: str
    mode: str = MODE_FILE

    def __post_init__(self):
        check_entry_name(self.name)
        check_digest(self.digest)
        if self.kind == TREE:
            if self.mode != MODE_DIRECTORY:
                raise InvalidInput(f"tree entry {self.name!r} needs mode {MODE_DIRECTORY}", field="mode")
        elif self.kind == BLOB:
            if self.mode not in BLOB_MODES:
                raise InvalidInput(f"blob entry {self.name!r} has invalid mode {self.mode!r}", field="mode")
        else:
            raise InvalidInput(f"invalid tree entry kind: {self.kind!r}", field="kind")

    @classmethod
    def file(cls, name: str, digest: str, executable: bool = False) -> "TreeEntry":
        return cls(name, BLOB, digest, MODE_EXECUTABLE if executable else MODE_FILE)

    @classmethod
    def directory(cls, name: str, digest: str) -> "TreeEntry":
        return cls(name, TREE, digest, MODE_DIRECTORY)


@dataclass(frozen=True)
class Tree:
    entries: Tuple[TreeEntry, ...] = ()
    digest: Optional[str] = field(default=None, compare=False, repr=False)

    kind = TREE

    def __post_init__(self):
        entries = tuple(sorted(self.entries, key=_sort_key))
        for previous, current in zip(entries, entries[1:]):
            if previous.name == current.name:
                raise InvalidInput(f"duplicate tree entry name: {current.name!r}", field="name")
        object.__setattr__(self, "entries", entries)

    @classmethod
    def from_entries(cls, entries: Iterable[TreeEntry]) -> "Tree":
        return cls(tuple(entries))

    def find(self, name: str) -> Optional[TreeEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def references(self) -> Tuple[str, ...]:
        return tuple(entry.digest for entry in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class Author:
    name: str
    email: str

    def __post_init__(self):
        for value, field_name in ((self.name, "author_name"), (self.email, "author_email")):
            if not value or any(c in value for c in "<>\n\r\0"):
                raise InvalidInput(f"invalid {field_name.replace('_', ' ')}: {value!r}", field=field_name)

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class Commit:
    tree: str
    parent: Optional[str]
    message: str
    author_name: str
    author_email: str
    timestamp: int
    digest: Optional[str] = field(default=None, compare=False, repr=False)

    kind = COMMIT

    def __post_init__(self):
        check_digest(self.tree, "tree")
        if self.parent is not None:
            check_digest(self.parent, "parent")
        Author(self.author_name, self.author_email)
        if not isinstance(self.timestamp, int) or isinstance(self.timestamp, bool):
            raise InvalidInput(f"invalid timestamp: {self.timestamp!r}", field="timestamp")

    @property
    def author(self) -> Author:
        return Author(self.author_name, self.author_email)

    @property
    def is_initial(self) -> bool:
        return self.parent is None

    @property
    def summary(self) -> str:
        lines = self.message.splitlines()
        return lines[0] if lines else ""

    def references(self) -> Tuple[str, ...]:
        if self.parent is None:
            return (self.tree,)
        return (self.tree, self.parent)
