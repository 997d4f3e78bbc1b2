"""Server side of the synchronization protocol.

Django views and :class:`~cts_core.remote.LocalRemote` both go through
:class:`RepositoryService`, so the upload validation and the reference
update rules are the same whatever the transport. The read-only
browsing queries (history, trees, file contents) live here too.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set, Tuple

from . import codec
from .errors import InvalidInput, NonFastForward, ObjectNotFound, PathNotFound, RefConflict, ReferenceNotFound
from .graph import CommitGraph
from .objects import BLOB, COMMIT, TREE, Blob, Commit, Tree, TreeEntry, check_digest, is_digest
from .store import BRANCH, ObjectStore, RefStore, branch_ref, ref_kind, tag_ref, validate_ref_name

logger = logging.getLogger(__name__)


class RepositoryService:
    def __init__(self, objects: ObjectStore, refs: RefStore, verify_connectivity: bool = True,
                 max_object_size: Optional[int] = None) -> None:
        self.objects = objects
        self.refs = refs
        self.graph = CommitGraph(objects)
        self.verify_connectivity = verify_connectivity
        self.max_object_size = max_object_size

    def head(self, name: str) -> Optional[str]:
        return self.refs.read_or_none(name)

    def list_refs(self) -> List[Tuple[str, str]]:
        return self.refs.list()

    def missing(self, digests: Iterable[str]) -> Set[str]:
        candidates = {check_digest(d) for d in digests}
        return self.objects.missing(candidates)

    def receive(self, digest: str, data: bytes, kind: Optional[str] = None) -> str:
        """Validate and store one uploaded object."""
        check_digest(digest)
        if self.max_object_size is not None and len(data) > self.max_object_size:
            raise InvalidInput(
                f"object {digest} is {len(data)} bytes, limit is {self.max_object_size}", field="data")
        obj = codec.decode(data, kind, digest=digest)
        if self.verify_connectivity:
            # objects must arrive after everything they point at
            for target in obj.references():
                if not self.objects.contains(target):
                    raise ObjectNotFound(target)
        stored = self.objects.put(data, digest)
        logger.debug("received %s %s", obj.kind, stored)
        return stored

    def send(self, digest: str) -> Tuple[str, bytes]:
        check_digest(digest)
        data = self.objects.get(digest)
        kind, _ = codec.read_header(data, digest)
        return kind, data

    def update_ref(self, name: str, expected_old: Optional[str], new: str) -> str:
        validate_ref_name(name)
        check_digest(new, "new")
        if expected_old is not None:
            check_digest(expected_old, "expected_old")
        self.objects.get_object(new, COMMIT)

        current = self.refs.read_or_none(name)
        if current != expected_old:
            raise RefConflict(name, expected_old, current)
        if (ref_kind(name) == BRANCH and expected_old is not None
                and not self.graph.is_ancestor(expected_old, new)):
            raise NonFastForward(name, expected_old, new)

        self.refs.compare_and_set(name, expected_old, new)
        logger.info("%s: %s -> %s", name, expected_old or "(unborn)", new)
        return new

    # -- browsing ---------------------------------------------------------------

    def resolve(self, rev: str) -> str:
        """Commit digest for a digest, a full ref name, or a branch or tag name."""
        if is_digest(rev):
            self.graph.get(rev)
            return rev
        names = [validate_ref_name(rev)] if rev.startswith("refs/") else [branch_ref(rev), tag_ref(rev)]
        for name in names:
            target = self.refs.read_or_none(name)
            if target is not None:
                return target
        raise ReferenceNotFound(names[0])

    def history(self, commit: str, limit: Optional[int] = None) -> List[Commit]:
        return self.graph.history(commit, limit)

    def tree_at(self, commit: str, path: str = "") -> Tuple[str, Tree]:
        digest = self.graph.get(commit).tree
        tree = self.objects.get_object(digest, TREE)
        for part in _split_path(path):
            entry = tree.find(part)
            if entry is None or entry.kind != TREE:
                raise PathNotFound(path, commit)
            digest = entry.digest
            tree = self.objects.get_object(digest, TREE)
        return digest, tree

    def blob_at(self, commit: str, path: str) -> Tuple[TreeEntry, Blob]:
        parts = _split_path(path)
        if not parts:
            raise PathNotFound(path, commit)
        try:
            _, tree = self.tree_at(commit, "/".join(parts[:-1]))
        except PathNotFound:
            raise PathNotFound(path, commit)
        entry = tree.find(parts[-1])
        if entry is None or entry.kind != BLOB:
            raise PathNotFound(path, commit)
        return entry, self.objects.get_object(entry.digest, BLOB)


def _split_path(path: str) -> List[str]:
    return [part for part in (path or "").strip("/").split("/") if part]
