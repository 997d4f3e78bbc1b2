"""Read-only traversal of the commit chain.

History is linear: each commit has at most one parent, so the graph is a
forest of singly-linked chains. There is no merge-base computation.
"""

from typing import List, Optional

from .objects import COMMIT, Commit
from .store import ObjectStore


class Ancestry:
    """Lazy, restartable walk from a commit back to its root, newest first."""

    def __init__(self, objects, head, stop=None):
        self.objects = objects
        self.head = head
        self.stop = stop

    def __iter__(self):
        digest = self.head
        while digest is not None and digest != self.stop:
            commit = self.objects.get_object(digest, COMMIT)
            yield commit
            digest = commit.parent

    def digests(self):
        for commit in self:
            yield commit.digest


class CommitGraph:
    def __init__(self, objects: ObjectStore):
        self.objects = objects

    def get(self, digest: str) -> Commit:
        return self.objects.get_object(digest, COMMIT)

    def ancestors(self, digest: str) -> Ancestry:
        return Ancestry(self.objects, digest)

    def walk(self, head: str, stop: Optional[str] = None) -> Ancestry:
        """Commits from *head* back to (excluding) *stop* or the root."""
        return Ancestry(self.objects, head, stop)

    def is_ancestor(self, candidate: str, of: str) -> bool:
        if candidate == of:
            return True
        if not self.objects.contains(candidate):
            # every ancestor of a stored commit is stored, so an absent
            # candidate cannot be one
            return False
        return any(d == candidate for d in self.ancestors(of).digests())

    def history(self, head: Optional[str], limit: Optional[int] = None) -> List[Commit]:
        if head is None:
            return []
        commits = []
        for commit in self.ancestors(head):
            if limit is not None and len(commits) >= limit:
                break
            commits.append(commit)
        return commits


def dependency_order(objects):
    """Order digests so each object follows everything it references.

    Only references inside *objects* are considered; anything else is
    assumed to be stored already.
    """
    order = []
    done = set()
    for root in objects:
        if root in done:
            continue
        stack = [(root, iter(objects[root].references()))]
        done.add(root)
        while stack:
            digest, children = stack[-1]
            for child in children:
                if child in objects and child not in done:
                    done.add(child)
                    stack.append((child, iter(objects[child].references())))
                    break
            else:
                stack.pop()
                order.append(digest)
    return order
