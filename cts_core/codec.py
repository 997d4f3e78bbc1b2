"""Canonical byte encoding of objects.

Every object is stored as ``b"<kind> <body length>\\0" + body`` and its
digest is the SHA-256 of exactly those bytes, header included.
"""

from __future__ import annotations

import hashlib
import re
from typing import Optional, Tuple, Union

from .errors import CorruptObject, InvalidInput
from .objects import (
    BLOB,
    COMMIT,
    DIGEST_LENGTH,
    OBJECT_KINDS,
    TREE,
    Blob,
    Commit,
    Tree,
    TreeEntry,
)

CtsObject = Union[Blob, Tree, Commit]

_AUTHOR_RE = re.compile(r"author ([^<>\n]+) <([^<>\n]+)>")
_TIMESTAMP_RE = re.compile(r"timestamp (0|-?[1-9][0-9]*)")
_LENGTH_RE = re.compile(r"0|[1-9][0-9]*")


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def encode(obj: CtsObject) -> bytes:
    if isinstance(obj, Blob):
        body = bytes(obj.data)
    elif isinstance(obj, Tree):
        body = b"".join(
            f"{e.mode} {e.kind} {e.name}".encode("utf-8") + b"\0" + e.digest.encode("ascii")
            for e in obj.entries
        )
    elif isinstance(obj, Commit):
        lines = [f"tree {obj.tree}"]
        if obj.parent is not None:
            lines.append(f"parent {obj.parent}")
        lines.append(f"author {obj.author_name} <{obj.author_email}>")
        lines.append(f"timestamp {obj.timestamp}")
        body = ("\n".join(lines) + "\n\n" + obj.message).encode("utf-8")
    else:
        raise TypeError(f"cannot encode {type(obj).__name__}")
    return f"{obj.kind} {len(body)}\0".encode("ascii") + body


def digest_of(obj: CtsObject) -> str:
    return hash_bytes(encode(obj))


def read_header(data: bytes, digest: Optional[str] = None) -> Tuple[str, int]:
    """Return ``(kind, body_size)`` after checking the header and length."""
    nul = data.find(b"\0", 0, 32)
    if nul < 0:
        raise CorruptObject("missing header", digest)
    try:
        kind, size = data[:nul].decode("ascii").split(" ")
    except (UnicodeDecodeError, ValueError):
        raise CorruptObject("malformed header", digest)
    if kind not in OBJECT_KINDS:
        raise CorruptObject(f"unknown object kind {kind!r}", digest)
    if not _LENGTH_RE.fullmatch(size):
        raise CorruptObject(f"malformed length {size!r}", digest)
    actual = len(data) - nul - 1
    if actual != int(size):
        raise CorruptObject(f"length mismatch: header says {size}, body has {actual}", digest)
    return kind, int(size)


def decode(data: bytes, expected_kind: Optional[str] = None, digest: Optional[str] = None) -> CtsObject:
    data = bytes(data)
    kind, size = read_header(data, digest)
    if expected_kind is not None and kind != expected_kind:
        raise CorruptObject(f"expected a {expected_kind}, found a {kind}", digest)
    body = data[len(data) - size:]
    if kind == BLOB:
        return Blob(body, digest=digest)
    obj = _decode_tree(body, digest) if kind == TREE else _decode_commit(body, digest)
    if encode(obj) != data:
        raise CorruptObject(f"non-canonical {kind} encoding", digest)
    return obj


def _decode_tree(body: bytes, digest: Optional[str]) -> Tree:
    entries = []
    pos = 0
    previous = None
    while pos < len(body):
        nul = body.find(b"\0", pos)
        if nul < 0:
            raise CorruptObject("truncated tree entry", digest)
        try:
            mode, kind, name = body[pos:nul].decode("utf-8").split(" ", 2)
            target = body[nul + 1:nul + 1 + DIGEST_LENGTH].decode("ascii")
            entry = TreeEntry(name, kind, target, mode)
        except (UnicodeDecodeError, ValueError) as exc:
            # InvalidInput is a ValueError
            raise CorruptObject(f"malformed tree entry at offset {pos}: {exc}", digest)
        key = name.encode("utf-8")
        if previous is not None and key <= previous:
            raise CorruptObject(f"tree entries out of order at {name!r}", digest)
        previous = key
        entries.append(entry)
        pos = nul + 1 + DIGEST_LENGTH
    return Tree(tuple(entries), digest=digest)


def _decode_commit(body: bytes, digest: Optional[str]) -> Commit:
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise CorruptObject("commit is not valid UTF-8", digest)
    header, sep, message = text.partition("\n\n")
    if not sep:
        raise CorruptObject("commit has no message separator", digest)
    lines = header.split("\n")

    parent = None
    if len(lines) == 4 and lines[1].startswith("parent "):
        parent = lines[1][len("parent "):]
        del lines[1]
    if len(lines) != 3 or not lines[0].startswith("tree "):
        raise CorruptObject("malformed commit header", digest)
    author = _AUTHOR_RE.fullmatch(lines[1])
    timestamp = _TIMESTAMP_RE.fullmatch(lines[2])
    if author is None or timestamp is None:
        raise CorruptObject("malformed commit header", digest)
    try:
        return Commit(
            tree=lines[0][len("tree "):],
            parent=parent,
            message=message,
            author_name=author.group(1),
            author_email=author.group(2),
            timestamp=int(timestamp.group(1)),
            digest=digest,
        )
    except InvalidInput as exc:
        raise CorruptObject(str(exc), digest)
