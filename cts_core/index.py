"""Staging area: path -> pending blob digest, turned into trees on commit."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Dict, NamedTuple, Optional, Tuple

from .disk import atomic_write
from .errors import InvalidInput, NothingToCommit
from .graph import CommitGraph
from .objects import BLOB, BLOB_MODES, MODE_FILE, TREE, Author, Blob, Commit, Tree, TreeEntry, check_entry_name
from .store import ObjectStore, RefStore, branch_ref

logger = logging.getLogger(__name__)

FileMap = Dict[str, Tuple[str, str]]


class IndexEntry(NamedTuple):
    digest: Optional[str]   # None stages a removal
    mode: Optional[str]


def normalize_path(path: str) -> str:
    parts = [p for p in str(path).replace(os.sep, "/").split("/") if p not in ("", ".")]
    if not parts:
        raise InvalidInput(f"invalid path: {path!r}", field="path")
    for part in parts:
        check_entry_name(part)
    return "/".join(parts)


def flatten_tree(objects: ObjectStore, tree_digest: str, prefix: str = "") -> FileMap:
    """Recursively list every blob under a tree as ``{path: (digest, mode)}``."""
    files: FileMap = {}
    tree = objects.get_object(tree_digest, TREE)
    for entry in tree.entries:
        path = f"{prefix}{entry.name}"
        if entry.kind == TREE:
            files.update(flatten_tree(objects, entry.digest, path + "/"))
        else:
            files[path] = (entry.digest, entry.mode)
    return files


def write_tree(objects: ObjectStore, files: FileMap) -> str:
    """Write the nested trees for a flat path map and return the root digest."""
    root: dict = {}
    for path, value in files.items():
        *dirs, leaf = path.split("/")
        node = root
        for name in dirs:
            node = node.setdefault(name, {})
        node[leaf] = value
    return _write_node(objects, root)


def _write_node(objects: ObjectStore, node: dict) -> str:
    entries = []
    for name, value in node.items():
        if isinstance(value, dict):
            entries.append(TreeEntry.directory(name, _write_node(objects, value)))
        else:
            digest, mode = value
            entries.append(TreeEntry(name, BLOB, digest, mode))
    return objects.put_object(Tree.from_entries(entries))


class WorkingIndex:
    def __init__(self, objects: ObjectStore, refs: RefStore, branch: str = "main",
                 path=None, allow_empty: bool = False) -> None:
        self.objects = objects
        self.refs = refs
        self.graph = CommitGraph(objects)
        self.ref = branch_ref(branch)
        self.path = Path(path) if path is not None else None
        self.allow_empty = allow_empty
        self._entries: Dict[str, IndexEntry] = {}
        self._load()

    def _load(self):
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text())
            self._entries = {p: IndexEntry(v["digest"], v["mode"]) for p, v in raw.items()}
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise InvalidInput(f"corrupt index file {self.path}: {exc}", field="index")

    def _save(self):
        if self.path is None:
            return
        raw = {p: {"digest": e.digest, "mode": e.mode} for p, e in self._entries.items()}
        atomic_write(self.path, json.dumps(raw, indent=2, sort_keys=True).encode())

    def stage(self, path: str, data: bytes, mode: str = MODE_FILE) -> str:
        if mode not in BLOB_MODES:
            raise InvalidInput(f"invalid file mode: {mode!r}", field="mode")
        path = normalize_path(path)
        digest = self.objects.put_object(Blob(data))
        self._entries[path] = IndexEntry(digest, mode)
        self._save()
        logger.debug("staged %s as %s", path, digest)
        return digest

    def remove(self, path: str) -> None:
        self._entries[normalize_path(path)] = IndexEntry(None, None)
        self._save()

    def unstage(self, path: str) -> bool:
        found = self._entries.pop(normalize_path(path), None) is not None
        if found:
            self._save()
        return found

    def clear(self) -> None:
        self._entries = {}
        self._save()

    def entries(self) -> Dict[str, IndexEntry]:
        return dict(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def head(self) -> Optional[str]:
        return self.refs.read_or_none(self.ref)

    def files(self, parent: Optional[str] = None) -> FileMap:
        """The parent commit's files with every staged change applied."""
        files: FileMap = {}
        if parent is not None:
            files = flatten_tree(self.objects, self.graph.get(parent).tree)
        for path, entry in sorted(self._entries.items()):
            nested = path + "/"
            for other in [p for p in files if p.startswith(nested)]:
                del files[other]
            if entry.digest is None:
                files.pop(path, None)
                continue
            parts = path.split("/")
            for i in range(1, len(parts)):
                files.pop("/".join(parts[:i]), None)
            files[path] = (entry.digest, entry.mode)
        return files

    def build_tree(self) -> str:
        return write_tree(self.objects, self.files(self.head()))

    def commit(self, message: str, author: Author, timestamp: Optional[int] = None) -> str:
        parent = self.head()
        files = self.files(parent)
        if not self.allow_empty and parent is None and not files:
            raise NothingToCommit(self.ref)
        tree = write_tree(self.objects, files)
        if not self.allow_empty and parent is not None and self.graph.get(parent).tree == tree:
            raise NothingToCommit(self.ref)

        commit = Commit(
            tree=tree,
            parent=parent,
            message=message,
            author_name=author.name,
            author_email=author.email,
            timestamp=int(time.time()) if timestamp is None else timestamp,
        )
        digest = self.objects.put_object(commit)
        self.refs.compare_and_set(self.ref, parent, digest)
        self.clear()
        logger.info("[%s %s] %s", self.ref, digest[:7], commit.summary)
        return digest
