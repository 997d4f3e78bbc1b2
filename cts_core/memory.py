"""In-process stores, used by tests and by :class:`~cts_core.remote.LocalRemote`."""

import threading

from .errors import RefConflict
from .store import ObjectStore, RefStore


class MemoryObjectStore(ObjectStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._objects = {}
        self._lock = threading.Lock()

    def _load(self, digest):
        return self._objects.get(digest)

    def _store(self, digest, kind, data):
        with self._lock:
            return self._objects.setdefault(digest, data)

    def __iter__(self):
        return iter(list(self._objects))

    def __len__(self):
        return len(self._objects)


class MemoryRefStore(RefStore):
    def __init__(self):
        self._refs = {}
        self._lock = threading.Lock()

    def _get(self, name):
        return self._refs.get(name)

    def compare_and_set(self, name, expected_old, new):
        self._check_update(name, new)
        with self._lock:
            current = self._refs.get(name)
            if current != expected_old:
                raise RefConflict(name, expected_old, current)
            if current is None:
                self._check_namespace(name)
            self._refs[name] = new

    def list(self):
        return sorted(self._refs.items())
