"""Content-addressed code storage: objects, refs, staging and sync."""

from .codec import decode, digest_of, encode
from .errors import (
    CorruptObject,
    CtsError,
    HashMismatch,
    InvalidInput,
    NetworkFailure,
    NonFastForward,
    NotARepository,
    NothingToCommit,
    ObjectNotFound,
    PathNotFound,
    RefConflict,
    ReferenceNotFound,
    RepositoryNotFound,
    SyncCancelled,
)
from .graph import CommitGraph
from .index import WorkingIndex
from .memory import MemoryObjectStore, MemoryRefStore
from .objects import Author, Blob, Commit, Tree, TreeEntry
from .remote import HttpRemote, LocalRemote, Remote
from .service import RepositoryService
from .sync import SyncEngine, SyncResult

__version__ = "0.1.0"
