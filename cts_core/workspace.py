"""A client checkout: working directory plus its ``.cts`` metadata.

Layout::

    .cts/config        remote URL, repository id, user identity
    .cts/HEAD          current branch name
    .cts/index         path -> staged blob digest
    .cts/objects/      local object cache
    .cts/refs/heads/   branch -> commit digest
    .cts/refs/tags/    tag -> commit digest
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from . import codec
from .config import Config
from .disk import FileObjectStore, FileRefStore
from .errors import InvalidInput, NotARepository, RefConflict, ReferenceNotFound
from .graph import CommitGraph
from .index import FileMap, WorkingIndex, flatten_tree
from .objects import BLOB, MODE_EXECUTABLE, MODE_FILE, Blob, Commit
from .remote import HttpRemote, Remote
from .store import HEADS_PREFIX, TAGS_PREFIX, branch_ref, short_ref, tag_ref
from .sync import SyncEngine, SyncResult

logger = logging.getLogger(__name__)

CTS_DIR = ".cts"
DEFAULT_BRANCH = "main"


@dataclass
class Status:
    branch: str
    head: Optional[str]
    staged: Dict[str, str] = field(default_factory=dict)
    unstaged: Dict[str, str] = field(default_factory=dict)
    untracked: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.staged or self.unstaged)


def _diff(old: FileMap, new: FileMap) -> Dict[str, str]:
    changes = {}
    for path in sorted(set(old) | set(new)):
        if path not in old:
            changes[path] = "added"
        elif path not in new:
            changes[path] = "deleted"
        elif old[path] != new[path]:
            changes[path] = "modified"
    return changes


class Workspace:
    def __init__(self, root) -> None:
        self.root = Path(root).resolve()
        self.cts_dir = self.root / CTS_DIR
        if not self.cts_dir.is_dir():
            raise NotARepository(str(self.root))
        self.config = Config(self.cts_dir / "config")
        self.objects = FileObjectStore(self.cts_dir / "objects")
        self.refs = FileRefStore(self.cts_dir)
        self.graph = CommitGraph(self.objects)

    @classmethod
    def init(cls, path=".", remote_url: Optional[str] = None, repository_id: Optional[str] = None,
             branch: str = DEFAULT_BRANCH) -> "Workspace":
        branch_ref(branch)
        cts_dir = Path(path).resolve() / CTS_DIR
        (cts_dir / "objects").mkdir(parents=True, exist_ok=True)
        (cts_dir / "refs" / "heads").mkdir(parents=True, exist_ok=True)
        (cts_dir / "refs" / "tags").mkdir(parents=True, exist_ok=True)
        head = cts_dir / "HEAD"
        if not head.exists():
            head.write_text(branch + "\n")
        config = Config(cts_dir / "config")
        if remote_url:
            config.parser.set("remote", "url", remote_url)
        if repository_id:
            config.parser.set("remote", "repository", str(repository_id))
        config.save()
        logger.info("Initialized empty cts repository in %s", cts_dir)
        return cls(cts_dir.parent)

    @classmethod
    def find(cls, path=".") -> "Workspace":
        start = Path(path).resolve()
        for candidate in (start, *start.parents):
            if (candidate / CTS_DIR).is_dir():
                return cls(candidate)
        raise NotARepository(str(start))

    # -- HEAD and index -------------------------------------------------------

    @property
    def branch(self) -> str:
        return (self.cts_dir / "HEAD").read_text().strip() or DEFAULT_BRANCH

    def set_branch(self, name: str) -> None:
        branch_ref(name)
        (self.cts_dir / "HEAD").write_text(name + "\n")

    @property
    def head_ref(self) -> str:
        return branch_ref(self.branch)

    def head(self) -> Optional[str]:
        return self.refs.read_or_none(self.head_ref)

    @property
    def index(self) -> WorkingIndex:
        return WorkingIndex(self.objects, self.refs, self.branch, self.cts_dir / "index",
                            allow_empty=self.config.allow_empty_commits)

    def head_files(self) -> FileMap:
        return self._tree_files(self.head())

    # -- paths ------------------------------------------------------------------

    def _abspath(self, path) -> Path:
        path = Path(path)
        if not path.is_absolute():
            path = Path.cwd() / path
        return Path(os.path.abspath(path))

    def relpath(self, path) -> str:
        try:
            rel = self._abspath(path).relative_to(self.root)
        except ValueError:
            raise InvalidInput(f"{path} is outside repository {self.root}", field="path")
        if rel.parts and rel.parts[0] == CTS_DIR:
            raise InvalidInput(f"{path} is inside {CTS_DIR}", field="path")
        return rel.as_posix()

    def iter_files(self, directory: Optional[Path] = None):
        for dirpath, dirnames, filenames in os.walk(directory or self.root):
            dirnames[:] = sorted(d for d in dirnames if d != CTS_DIR)
            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    # -- staging and committing ----------------------------------------------

    def add(self, *paths) -> List[str]:
        index = self.index
        added = []
        for path in paths:
            full = self._abspath(path)
            if full.is_dir():
                files = list(self.iter_files(full))
            elif full.is_file():
                files = [full]
            else:
                raise InvalidInput(f"pathspec {str(path)!r} did not match any files", field="path")
            for file_path in files:
                rel = self.relpath(file_path)
                mode = MODE_EXECUTABLE if file_path.stat().st_mode & 0o111 else MODE_FILE
                index.stage(rel, file_path.read_bytes(), mode)
                added.append(rel)
        return added

    def remove(self, *paths, cached: bool = False) -> List[str]:
        index = self.index
        tracked = index.files(self.head())
        removed = []
        for path in paths:
            rel = self.relpath(path)
            matches = [p for p in tracked if p == rel or p.startswith(rel + "/")]
            if not matches:
                raise InvalidInput(f"pathspec {str(path)!r} did not match any tracked files", field="path")
            index.remove(rel)
            if not cached:
                for match in matches:
                    target = self.root / match
                    if target.is_file():
                        target.unlink()
            removed.extend(matches)
        return removed

    def unstage(self, *paths) -> List[str]:
        index = self.index
        return [self.relpath(p) for p in paths if index.unstage(self.relpath(p))]

    def commit(self, message: str, timestamp: Optional[int] = None) -> str:
        return self.index.commit(message, self.config.author(), timestamp)

    def log(self, limit: Optional[int] = None) -> List[Commit]:
        return self.graph.history(self.head(), limit)

    def status(self) -> Status:
        head = self.head()
        expected = self.index.files(head)
        status = Status(self.branch, head, staged=_diff(self.head_files(), expected))
        for path, (digest, _) in sorted(expected.items()):
            target = self.root / path
            if not target.is_file():
                status.unstaged[path] = "deleted"
            elif codec.digest_of(Blob(target.read_bytes())) != digest:
                status.unstaged[path] = "modified"
        for file_path in self.iter_files():
            rel = file_path.relative_to(self.root).as_posix()
            if rel not in expected:
                status.untracked.append(rel)
        return status

    # -- branches and tags ------------------------------------------------------

    def _create_ref(self, name: str, target: Optional[str]) -> str:
        target = target or self.head()
        if target is None:
            raise ReferenceNotFound(self.head_ref)
        self.graph.get(target)
        try:
            self.refs.compare_and_set(name, None, target)
        except RefConflict:
            raise InvalidInput(f"{short_ref(name)!r} already exists", field="ref")
        return target

    def create_branch(self, name: str, start: Optional[str] = None) -> str:
        return self._create_ref(branch_ref(name), start)

    def create_tag(self, name: str, target: Optional[str] = None) -> str:
        return self._create_ref(tag_ref(name), target)

    def branches(self) -> List[str]:
        return [short_ref(name) for name, _ in self.refs.list() if name.startswith(HEADS_PREFIX)]

    def tags(self) -> List[str]:
        return [short_ref(name) for name, _ in self.refs.list() if name.startswith(TAGS_PREFIX)]

    def _tree_files(self, commit: Optional[str]) -> FileMap:
        if commit is None:
            return {}
        return flatten_tree(self.objects, self.graph.get(commit).tree)

    def check_overwrite(self, commit: str, previous: Optional[str] = None) -> None:
        """Refuse to check out *commit* over untracked work.

        A path *commit* adds that *previous* does not track must be absent
        from the working directory or already hold the incoming content.
        """
        tracked = self._tree_files(previous)
        blocked = []
        for path, (digest, _) in sorted(self._tree_files(commit).items()):
            if path in tracked:
                continue
            target = self.root / path
            if target.is_file():
                if codec.digest_of(Blob(target.read_bytes())) != digest:
                    blocked.append(path)
            elif target.is_dir():
                inside = (f.relative_to(self.root).as_posix() for f in self.iter_files(target))
                if any(rel not in tracked for rel in inside):
                    blocked.append(path)
            else:
                parts = path.split("/")
                prefixes = ("/".join(parts[:i]) for i in range(1, len(parts)))
                if any((self.root / p).is_file() and p not in tracked for p in prefixes):
                    blocked.append(path)
        if blocked:
            raise InvalidInput(
                "untracked working tree files would be overwritten: " + ", ".join(blocked), field="path")

    def checkout_tree(self, commit: str, previous: Optional[str] = None) -> None:
        """Write *commit*'s files into the working directory.

        Files tracked by *previous* but absent from *commit* are deleted.
        """
        self.check_overwrite(commit, previous)
        new_files = self._tree_files(commit)
        old_files = self._tree_files(previous)
        for path in sorted(set(old_files) - set(new_files)):
            target = self.root / path
            if target.is_file():
                target.unlink()
            parent = target.parent
            while parent != self.root and parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent
        for path, (digest, mode) in sorted(new_files.items()):
            target = self.root / path
            if target.is_dir():
                raise InvalidInput(f"cannot check out {path}: a directory is in the way", field="path")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(self.objects.get_object(digest, BLOB).data)
            target.chmod(0o755 if mode == MODE_EXECUTABLE else 0o644)

    # -- remote -----------------------------------------------------------------

    def remote(self, session=None) -> HttpRemote:
        repository_id = self.config.repository_id
        if not repository_id:
            raise InvalidInput("no remote repository configured (remote.repository)", field="remote.repository")
        return HttpRemote(self.config.remote_url, repository_id, session=session, timeout=self.config.timeout)

    def sync_engine(self, remote: Optional[Remote] = None) -> SyncEngine:
        return SyncEngine(self.objects, self.refs, remote or self.remote())

    def push(self, branch: Optional[str] = None, remote: Optional[Remote] = None) -> SyncResult:
        return self.sync_engine(remote).push(branch or self.branch)

    def pull(self, branch: Optional[str] = None, remote: Optional[Remote] = None) -> SyncResult:
        branch = branch or self.branch
        current = branch == self.branch
        if current and not self.status().clean:
            raise InvalidInput("local changes would be overwritten by pull; commit them first", field="path")
        engine = self.sync_engine(remote)
        if not current:
            return engine.pull(branch)
        return self._pull_into_tree(engine, branch)

    def _pull_into_tree(self, engine: SyncEngine, branch: str) -> SyncResult:
        # fetch and vet the incoming tree before the branch moves
        head = self.head()
        incoming = engine.fetch(branch)
        if incoming is not None and (head is None or self.graph.is_ancestor(head, incoming)):
            self.check_overwrite(incoming, head)
        result = engine.pull(branch)
        if result.updated:
            self.checkout_tree(result.new, previous=result.old)
        return result

    @classmethod
    def clone(cls, path, remote_url: Optional[str] = None, repository_id: Optional[str] = None,
              branch: Optional[str] = None, remote: Optional[Remote] = None) -> "Workspace":
        if remote is None:
            if not remote_url or not repository_id:
                raise InvalidInput("clone needs a remote URL and a repository id", field="remote")
            remote = HttpRemote(remote_url, repository_id)
            if branch is None:
                branch = remote.info().get("default_branch")
        workspace = cls.init(path, remote_url, repository_id, branch=branch or DEFAULT_BRANCH)
        try:
            workspace._pull_into_tree(workspace.sync_engine(remote), workspace.branch)
        except ReferenceNotFound:
            logger.warning("cloned an empty repository")
        return workspace
