# Unit tests for the object stores (memory, filesystem and database)

import zlib

import pytest

from cts_core import codec
from cts_core.disk import FileObjectStore
from cts_core.errors import CorruptObject, HashMismatch, InvalidInput, ObjectNotFound
from cts_core.memory import MemoryObjectStore
from cts_core.objects import BLOB, Blob
from repo_app.models import StoredObject
from repo_app.stores import DjangoObjectStore


@pytest.fixture(params=["memory", "file", "django"])
def make_store(request, tmp_path):
    # Builds a store of the parametrized backend, passing through hash_fn
    if request.param == "memory":
        return MemoryObjectStore
    if request.param == "django":
        repository = request.getfixturevalue("repository")
        return lambda **kwargs: DjangoObjectStore(repository, **kwargs)
    return lambda **kwargs: FileObjectStore(tmp_path / "objects", **kwargs)


@pytest.fixture
def store(make_store):
    return make_store()


class TestPutGet:
    # Basic contract shared by every backend

    def test_put_returns_digest(self, store):
        data = codec.encode(Blob(b"hello"))
        assert store.put(data) == codec.hash_bytes(data)

    def test_get_returns_same_bytes(self, store):
        data = codec.encode(Blob(b"hello"))
        digest = store.put(data)
        assert store.get(digest) == data

    def test_get_missing_raises(self, store):
        with pytest.raises(ObjectNotFound) as exc_info:
            store.get("f" * 64)
        assert exc_info.value.digest == "f" * 64

    def test_contains(self, store):
        digest = store.put_object(Blob(b"x"))
        assert store.contains(digest)
        assert digest in store
        assert not store.contains("0" * 64)

    def test_put_is_idempotent(self, store):
        data = codec.encode(Blob(b"same"))
        assert store.put(data) == store.put(data)
        assert len(store) == 1

    def test_put_rejects_corrupt_bytes(self, store):
        with pytest.raises(CorruptObject):
            store.put(b"not an object")
        assert len(store) == 0

    def test_claimed_digest_must_match(self, store):
        data = codec.encode(Blob(b"x"))
        with pytest.raises(HashMismatch) as exc_info:
            store.put(data, "0" * 64)
        assert exc_info.value.actual == codec.hash_bytes(data)
        assert len(store) == 0

    def test_get_object_decodes(self, store):
        digest = store.put_object(Blob(b"content"))
        blob = store.get_object(digest, BLOB)
        assert blob.data == b"content"
        assert blob.digest == digest

    def test_iterates_stored_digests(self, store):
        digests = {store.put_object(Blob(bytes([i]))) for i in range(5)}
        assert set(store) == digests
        assert len(store) == 5


class TestMissing:
    # Negotiation returns exactly the absent subset

    def test_missing_is_exact(self, store):
        present = store.put_object(Blob(b"a"))
        absent = codec.digest_of(Blob(b"b"))
        assert store.missing([present, absent]) == {absent}

    def test_missing_of_nothing(self, store):
        assert store.missing([]) == set()


class TestCollisionGuard:
    # A forced collision never overwrites stored content

    def test_different_bytes_same_digest(self, make_store):
        store = make_store(hash_fn=lambda data: "a" * 64)
        first = codec.encode(Blob(b"first"))
        second = codec.encode(Blob(b"second"))
        store.put(first)
        with pytest.raises(HashMismatch) as exc_info:
            store.put(second)
        assert exc_info.value.digest == "a" * 64
        assert store.get("a" * 64) == first

    def test_same_bytes_under_forced_digest(self, make_store):
        store = make_store(hash_fn=lambda data: "b" * 64)
        data = codec.encode(Blob(b"first"))
        assert store.put(data) == store.put(data) == "b" * 64
        assert len(store) == 1


class TestFileObjectStore:
    # On-disk layout

    def test_sharded_zlib_layout(self, tmp_path):
        store = FileObjectStore(tmp_path)
        data = codec.encode(Blob(b"on disk"))
        digest = store.put(data)
        path = tmp_path / digest[:2] / digest[2:]
        assert path.is_file()
        assert zlib.decompress(path.read_bytes()) == data

    def test_no_temp_files_left(self, tmp_path):
        store = FileObjectStore(tmp_path)
        digest = store.put_object(Blob(b"x"))
        assert [p.name for p in (tmp_path / digest[:2]).iterdir()] == [digest[2:]]

    def test_corrupt_payload(self, tmp_path):
        store = FileObjectStore(tmp_path)
        digest = store.put_object(Blob(b"x"))
        (tmp_path / digest[:2] / digest[2:]).write_bytes(b"not zlib")
        with pytest.raises(CorruptObject):
            store.get(digest)

    def test_invalid_digest_is_absent(self, tmp_path):
        store = FileObjectStore(tmp_path)
        assert not store.contains("../../etc/passwd")
        with pytest.raises(ObjectNotFound):
            store.get("xyz")

    def test_survives_reopen(self, tmp_path):
        digest = FileObjectStore(tmp_path).put_object(Blob(b"persist"))
        assert FileObjectStore(tmp_path).get_object(digest).data == b"persist"


def test_check_digest_rejects_uppercase():
    from cts_core.objects import check_digest
    with pytest.raises(InvalidInput):
        check_digest("A" * 64)


class TestDjangoObjectStore:
    # Rows and the unique (repository, digest) constraint

    def test_concurrent_insert_keeps_first_row(self, repository):
        store = DjangoObjectStore(repository)
        data = codec.encode(Blob(b"raced"))
        digest = codec.hash_bytes(data)
        StoredObject.objects.create(repository=repository, digest=digest, kind=BLOB, size=len(data), data=data)
        # the other writer's row makes the insert fail; the stored bytes come back
        assert store._store(digest, BLOB, data) == data
        assert StoredObject.objects.filter(digest=digest).count() == 1

    def test_row_metadata(self, repository):
        store = DjangoObjectStore(repository)
        digest = store.put_object(Blob(b"12345"))
        row = StoredObject.objects.get(digest=digest)
        assert row.kind == BLOB
        assert row.size == len(codec.encode(Blob(b"12345")))
