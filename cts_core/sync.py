"""Push and pull of a branch's history between a local store and a remote.

Only objects the other side reports missing are transferred, always in
dependency order, and a reference moves only after every object it
needs is stored. The final compare-and-set is never retried blindly:
after a conflict the ancestry is checked again against the value the
other side reported.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from . import codec
from .errors import HashMismatch, NetworkFailure, NonFastForward, RefConflict, ReferenceNotFound, SyncCancelled
from .graph import CommitGraph, dependency_order
from .objects import COMMIT, TREE, Commit
from .remote import Remote
from .store import ObjectStore, RefStore, branch_ref

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    ref: str
    old: Optional[str]
    new: Optional[str]
    commits: int = 0
    objects: int = 0

    @property
    def updated(self) -> bool:
        return self.old != self.new


class SyncEngine:
    def __init__(self, objects: ObjectStore, refs: RefStore, remote: Remote, retries: int = 3,
                 backoff: float = 0.2, max_backoff: float = 5.0, max_cas_attempts: int = 5,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.objects = objects
        self.refs = refs
        self.remote = remote
        self.graph = CommitGraph(objects)
        self.retries = retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.max_cas_attempts = max_cas_attempts
        self._sleep = sleep

    def _retry(self, description: str, fn, *args):
        for attempt in range(self.retries + 1):
            try:
                return fn(*args)
            except NetworkFailure as exc:
                if attempt >= self.retries:
                    raise
                delay = min(self.backoff * (2 ** attempt), self.max_backoff)
                delay = random.uniform(delay / 2, delay)
                logger.warning("%s failed (%s), retrying in %.2fs", description, exc, delay)
                self._sleep(delay)

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event], ref: str) -> None:
        if cancel is not None and cancel.is_set():
            raise SyncCancelled(ref)

    # -- push -----------------------------------------------------------------

    def push(self, branch: str, cancel: Optional[threading.Event] = None) -> SyncResult:
        ref = branch_ref(branch)
        local_head = self.refs.read(ref)
        remote_head = self._retry(f"read {ref}", self.remote.read_ref, ref)
        if remote_head == local_head:
            logger.info("%s: everything up-to-date", ref)
            return SyncResult(ref, remote_head, local_head)
        if remote_head is not None and not self.graph.is_ancestor(remote_head, local_head):
            raise NonFastForward(ref, remote_head, local_head)

        order, commits = self.outgoing(local_head, remote_head)
        self._check_cancel(cancel, ref)
        wanted = self._retry("missing", self.remote.missing, set(order))
        to_send = [digest for digest in order if digest in wanted]
        logger.debug("%s: %d candidates, %d missing remotely", ref, len(order), len(to_send))
        for digest in to_send:
            self._check_cancel(cancel, ref)
            self._retry(f"upload {digest}", self.remote.upload, digest, self.objects.get(digest))

        self._check_cancel(cancel, ref)
        old = self._advance_remote(ref, remote_head, local_head)
        logger.info("pushed %s: %s -> %s (%d objects)", ref, old or "(unborn)", local_head, len(to_send))
        return SyncResult(ref, old, local_head, commits=len(commits), objects=len(to_send))

    def outgoing(self, head: str, known: Optional[str]) -> Tuple[List[str], List[Commit]]:
        """Digests reachable from *head* but not from *known*, dependencies first."""
        commits = list(self.graph.walk(head, stop=known))
        seen: Set[str] = set()
        order: List[str] = []
        for commit in reversed(commits):
            self._collect_tree(commit.tree, seen, order)
            seen.add(commit.digest)
            order.append(commit.digest)
        return order, commits

    def _collect_tree(self, digest: str, seen: Set[str], order: List[str]) -> None:
        if digest in seen:
            return
        seen.add(digest)
        for entry in self.objects.get_object(digest, TREE).entries:
            if entry.kind == TREE:
                self._collect_tree(entry.digest, seen, order)
            elif entry.digest not in seen:
                seen.add(entry.digest)
                order.append(entry.digest)
        order.append(digest)

    def _advance_remote(self, ref: str, expected: Optional[str], new: str) -> Optional[str]:
        for _ in range(self.max_cas_attempts):
            try:
                self.remote.compare_and_set(ref, expected, new)
                return expected
            except RefConflict as conflict:
                actual = conflict.actual
                if actual == new:
                    return actual
                if actual is not None and not self.graph.is_ancestor(actual, new):
                    raise NonFastForward(ref, actual, new) from conflict
                logger.warning("%s moved to %s during push, retrying", ref, actual or "(unborn)")
                expected = actual
        raise NonFastForward(ref, expected, new)

    # -- pull -----------------------------------------------------------------

    def fetch(self, branch: str, cancel: Optional[threading.Event] = None) -> Optional[str]:
        """Download the remote branch's missing history without moving any ref."""
        ref = branch_ref(branch)
        remote_head = self._retry(f"read {ref}", self.remote.read_ref, ref)
        if remote_head is not None:
            self._fetch_history(remote_head, ref, cancel)
        return remote_head

    def pull(self, branch: str, cancel: Optional[threading.Event] = None) -> SyncResult:
        ref = branch_ref(branch)
        remote_head = self._retry(f"read {ref}", self.remote.read_ref, ref)
        if remote_head is None:
            raise ReferenceNotFound(ref)
        local_head = self.refs.read_or_none(ref)
        if remote_head == local_head or (
                local_head is not None and self.graph.is_ancestor(remote_head, local_head)):
            logger.info("%s: already up to date", ref)
            return SyncResult(ref, local_head, local_head)

        commits, count = self._fetch_history(remote_head, ref, cancel)
        if local_head is not None and not self.graph.is_ancestor(local_head, remote_head):
            raise NonFastForward(ref, local_head, remote_head)

        self._check_cancel(cancel, ref)
        try:
            self.refs.compare_and_set(ref, local_head, remote_head)
        except RefConflict as conflict:
            raise NonFastForward(ref, conflict.actual, remote_head) from conflict
        logger.info("pulled %s: %s -> %s (%d objects)", ref, local_head or "(unborn)", remote_head, count)
        return SyncResult(ref, local_head, remote_head, commits=commits, objects=count)

    def _download(self, digest: str, expected_kind: Optional[str] = None):
        data = self._retry(f"download {digest}", self.remote.download, digest)
        actual = self.objects.hash_fn(data)
        if actual != digest:
            raise HashMismatch(digest, actual)
        return data, codec.decode(data, expected_kind, digest=digest)

    def _fetch_history(self, head: str, ref: str, cancel: Optional[threading.Event]) -> Tuple[int, int]:
        pending: Dict[str, tuple] = {}
        commits = []
        digest = head
        while digest is not None and not self.objects.contains(digest):
            self._check_cancel(cancel, ref)
            data, commit = self._download(digest, COMMIT)
            pending[digest] = (data, commit)
            commits.append(commit)
            digest = commit.parent

        frontier = {commit.tree: TREE for commit in commits}
        while frontier:
            wanted = self.objects.missing(frontier) - set(pending)
            next_frontier = {}
            for digest in sorted(wanted):
                self._check_cancel(cancel, ref)
                data, obj = self._download(digest, frontier[digest])
                pending[digest] = (data, obj)
                if obj.kind == TREE:
                    next_frontier.update((entry.digest, entry.kind) for entry in obj.entries)
            frontier = next_frontier

        for digest in dependency_order({d: obj for d, (_, obj) in pending.items()}):
            self.objects.put(pending[digest][0], digest)
        logger.debug("fetched %d commits, %d objects for %s", len(commits), len(pending), ref)
        return len(commits), len(pending)
