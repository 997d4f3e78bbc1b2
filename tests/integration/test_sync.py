# Integration tests for push/pull between in-memory clients and a server

import threading

import pytest

from cts_core import codec
from cts_core.errors import (
    HashMismatch, InvalidInput, NetworkFailure, NonFastForward, ObjectNotFound, RefConflict,
    ReferenceNotFound, SyncCancelled,
)
from cts_core.graph import CommitGraph
from cts_core.objects import Blob, Commit, Tree, TreeEntry
from cts_core.remote import Remote
from cts_core.sync import SyncEngine

MAIN = "refs/heads/main"


class WrappedRemote(Remote):
    # Delegates to another remote; subclasses override single calls
    def __init__(self, inner):
        self.inner = inner
        self.uploaded = []
        self.negotiated = []

    def read_ref(self, name):
        return self.inner.read_ref(name)

    def compare_and_set(self, name, expected_old, new):
        return self.inner.compare_and_set(name, expected_old, new)

    def list_refs(self):
        return self.inner.list_refs()

    def missing(self, digests):
        digests = set(digests)
        result = self.inner.missing(digests)
        self.negotiated.append((digests, result))
        return result

    def upload(self, digest, data):
        self.inner.upload(digest, data)
        self.uploaded.append(digest)

    def download(self, digest):
        return self.inner.download(digest)


class FlakyRemote(WrappedRemote):
    # First `failures` uploads raise NetworkFailure
    def __init__(self, inner, failures):
        super().__init__(inner)
        self.failures = failures

    def upload(self, digest, data):
        if self.failures > 0:
            self.failures -= 1
            raise NetworkFailure("connection reset", url="memory://")
        super().upload(digest, data)


class RacingRemote(WrappedRemote):
    # Runs `hook` once right before the first compare-and-set
    def __init__(self, inner, hook):
        super().__init__(inner)
        self.hook = hook

    def compare_and_set(self, name, expected_old, new):
        hook, self.hook = self.hook, None
        if hook is not None:
            hook()
        return super().compare_and_set(name, expected_old, new)


class TamperingRemote(WrappedRemote):
    # Serves a different blob than the one requested
    def download(self, digest):
        data = super().download(digest)
        if data.startswith(b"blob"):
            return codec.encode(Blob(b"tampered"))
        return data


def engine(client, remote, **kwargs):
    kwargs.setdefault("sleep", lambda seconds: None)
    return SyncEngine(client.objects, client.refs, remote, **kwargs)


class TestPush:
    # Uploading history and moving the server branch

    def test_push_to_empty_server(self, server, make_client):
        client = make_client()
        c1 = client.commit({"a.txt": b"one"}, "C1")
        c2 = client.commit({"b.txt": b"two"}, "C2")
        remote = WrappedRemote(server.remote)

        result = engine(client, remote).push("main")

        assert server.refs.read(MAIN) == c2
        assert result.old is None and result.new == c2
        assert result.commits == 2
        # 2 commits, 2 trees, 2 blobs, all missing on the server
        candidates, missing = remote.negotiated[0]
        assert missing == candidates
        assert len(missing) == 6
        assert {c1, c2} <= missing
        for digest in [c1, c2]:
            commit = client.objects.get_object(digest)
            assert commit.tree in missing
        assert set(server.objects) == set(client.objects)

    def test_uploads_in_dependency_order(self, server, make_client):
        client = make_client()
        client.commit({"src/a.py": b"a", "README": b"r"}, "C1")
        client.commit({"src/b.py": b"b"}, "C2")
        remote = WrappedRemote(server.remote)
        engine(client, remote).push("main")

        position = {d: i for i, d in enumerate(remote.uploaded)}
        for digest in remote.uploaded:
            for ref in client.objects.get_object(digest).references():
                assert position[ref] < position[digest]

    def test_second_push_sends_only_new_objects(self, server, make_client):
        client = make_client()
        client.commit({"a.txt": b"1", "b.txt": b"2"}, "C1")
        engine(client, server.remote).push("main")
        client.commit({"a.txt": b"changed"}, "C2")

        remote = WrappedRemote(server.remote)
        result = engine(client, remote).push("main")
        # new commit, new root tree, new blob
        assert result.objects == 3
        assert len(remote.uploaded) == 3

    def test_up_to_date(self, server, make_client):
        client = make_client()
        client.commit({"a": b"1"}, "C1")
        engine(client, server.remote).push("main")
        result = engine(client, server.remote).push("main")
        assert not result.updated

    def test_push_without_local_branch(self, server, make_client):
        with pytest.raises(ReferenceNotFound):
            engine(make_client(), server.remote).push("main")

    def test_sibling_push_rejected(self, server, make_client):
        a, b = make_client(), make_client()
        c1 = a.commit({"f": b"1"}, "C1")
        engine(a, server.remote).push("main")
        engine(b, server.remote).pull("main")

        c2 = a.commit({"f": b"2"}, "C2")
        engine(a, server.remote).push("main")
        c3 = b.commit({"f": b"3"}, "C3")

        with pytest.raises(RefConflict) as exc_info:
            server.refs.compare_and_set(MAIN, c1, c3)
        assert exc_info.value.actual == c2
        with pytest.raises(NonFastForward):
            engine(b, server.remote).push("main")
        assert server.refs.read(MAIN) == c2

    def test_sibling_pushed_during_upload(self, server, make_client):
        a, b = make_client(), make_client()
        a.commit({"f": b"1"}, "C1")
        engine(a, server.remote).push("main")
        engine(b, server.remote).pull("main")
        c2 = a.commit({"f": b"2"}, "C2")
        b.commit({"f": b"3"}, "C3")

        remote = RacingRemote(server.remote, lambda: engine(a, server.remote).push("main"))
        with pytest.raises(NonFastForward) as exc_info:
            engine(b, remote).push("main")
        assert exc_info.value.details["old"] == c2
        assert server.refs.read(MAIN) == c2

    def test_ref_advanced_to_ancestor_during_push(self, server, make_client):
        client = make_client()
        c1 = client.commit({"f": b"1"}, "C1")
        engine(client, server.remote).push("main")
        c2 = client.commit({"f": b"2"}, "C2")
        c3 = client.commit({"f": b"3"}, "C3")

        # someone else pushes C2 (already uploaded by us) before our CAS
        remote = RacingRemote(server.remote, lambda: server.service.update_ref(MAIN, c1, c2))
        result = engine(client, remote).push("main")
        assert result.old == c2
        assert server.refs.read(MAIN) == c3


class TestPull:
    # Fetching history and fast-forwarding the local branch

    def test_clone_like_pull(self, server, make_client):
        a, b = make_client(), make_client()
        a.commit({"dir/x": b"x", "y": b"y"}, "C1")
        c2 = a.commit({"z": b"z"}, "C2")
        engine(a, server.remote).push("main")

        result = engine(b, server.remote).pull("main")
        assert result.old is None and result.new == c2
        assert b.refs.read(MAIN) == c2
        assert set(b.objects) == set(a.objects)
        assert [c.message for c in CommitGraph(b.objects).history(c2)] == ["C2", "C1"]

    def test_fast_forward(self, server, make_client):
        a, b = make_client(), make_client()
        a.commit({"f": b"1"}, "C1")
        engine(a, server.remote).push("main")
        engine(b, server.remote).pull("main")
        c2 = a.commit({"f": b"2"}, "C2")
        engine(a, server.remote).push("main")

        remote = WrappedRemote(server.remote)
        result = engine(b, remote).pull("main")
        assert result.new == c2
        # only the new commit, its tree and the changed blob
        assert result.objects == 3

    def test_local_ahead_is_noop(self, server, make_client):
        client = make_client()
        client.commit({"f": b"1"}, "C1")
        engine(client, server.remote).push("main")
        c2 = client.commit({"f": b"2"}, "C2")
        result = engine(client, server.remote).pull("main")
        assert not result.updated
        assert client.refs.read(MAIN) == c2

    def test_diverged_pull_fails(self, server, make_client):
        a, b = make_client(), make_client()
        a.commit({"f": b"1"}, "C1")
        engine(a, server.remote).push("main")
        engine(b, server.remote).pull("main")
        a.commit({"f": b"2"}, "C2")
        engine(a, server.remote).push("main")
        c3 = b.commit({"f": b"3"}, "C3")

        with pytest.raises(NonFastForward):
            engine(b, server.remote).pull("main")
        assert b.refs.read(MAIN) == c3

    def test_unborn_remote_branch(self, server, make_client):
        with pytest.raises(ReferenceNotFound):
            engine(make_client(), server.remote).pull("main")

    def test_tampered_download(self, server, make_client):
        a, b = make_client(), make_client()
        a.commit({"f": b"1"}, "C1")
        engine(a, server.remote).push("main")
        with pytest.raises(HashMismatch):
            engine(b, TamperingRemote(server.remote)).pull("main")
        assert b.refs.read_or_none(MAIN) is None

    def test_fetch_does_not_move_ref(self, server, make_client):
        a, b = make_client(), make_client()
        c1 = a.commit({"f": b"1"}, "C1")
        engine(a, server.remote).push("main")
        assert engine(b, server.remote).fetch("main") == c1
        assert c1 in b.objects
        assert b.refs.read_or_none(MAIN) is None


class TestRetries:
    # NetworkFailure is retried with backoff, nothing else is

    def test_transient_failures_retried(self, server, make_client):
        client = make_client()
        c1 = client.commit({"f": b"1"}, "C1")
        sleeps = []
        remote = FlakyRemote(server.remote, failures=2)
        engine(client, remote, retries=3, sleep=sleeps.append).push("main")
        assert server.refs.read(MAIN) == c1
        assert len(sleeps) == 2
        assert all(0 < s <= 5.0 for s in sleeps)

    def test_retries_exhausted(self, server, make_client):
        client = make_client()
        client.commit({"f": b"1"}, "C1")
        remote = FlakyRemote(server.remote, failures=10)
        with pytest.raises(NetworkFailure):
            engine(client, remote, retries=2).push("main")
        assert server.refs.read_or_none(MAIN) is None


class TestCancellation:
    # A set event stops the sync before the ref moves

    def test_cancel_before_start(self, server, make_client):
        client = make_client()
        client.commit({"f": b"1"}, "C1")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SyncCancelled):
            engine(client, server.remote).push("main", cancel=cancel)
        assert server.refs.read_or_none(MAIN) is None

    def test_cancel_mid_upload(self, server, make_client):
        client = make_client()
        client.commit({"a": b"1", "b": b"2", "c": b"3"}, "C1")
        cancel = threading.Event()

        class CancellingRemote(WrappedRemote):
            def upload(self, digest, data):
                super().upload(digest, data)
                cancel.set()

        remote = CancellingRemote(server.remote)
        with pytest.raises(SyncCancelled):
            engine(client, remote).push("main", cancel=cancel)
        assert len(remote.uploaded) == 1
        assert server.refs.read_or_none(MAIN) is None


class TestServerRules:
    # Validation performed by RepositoryService whatever the transport

    def test_dangling_reference_rejected(self, server):
        tree = Tree.from_entries([TreeEntry.file("a", codec.digest_of(Blob(b"not uploaded")))])
        data = codec.encode(tree)
        with pytest.raises(ObjectNotFound):
            server.service.receive(codec.hash_bytes(data), data)
        assert len(server.objects) == 0

    def test_wrong_digest_rejected(self, server):
        data = codec.encode(Blob(b"x"))
        with pytest.raises(HashMismatch):
            server.service.receive("0" * 64, data)

    def test_size_limit(self, server):
        from cts_core.service import RepositoryService
        service = RepositoryService(server.objects, server.refs, max_object_size=4)
        data = codec.encode(Blob(b"too large"))
        with pytest.raises(InvalidInput):
            service.receive(codec.hash_bytes(data), data)

    def test_ref_must_point_at_stored_commit(self, server):
        with pytest.raises(ObjectNotFound):
            server.service.update_ref(MAIN, None, "c" * 64)

    def test_branch_rewind_rejected(self, server, make_client):
        client = make_client()
        c1 = client.commit({"f": b"1"}, "C1")
        c2 = client.commit({"f": b"2"}, "C2")
        engine(client, server.remote).push("main")
        with pytest.raises(NonFastForward):
            server.service.update_ref(MAIN, c2, c1)

    def test_tags_may_move_anywhere(self, server, make_client):
        client = make_client()
        c1 = client.commit({"f": b"1"}, "C1")
        c2 = client.commit({"f": b"2"}, "C2")
        engine(client, server.remote).push("main")
        server.service.update_ref("refs/tags/v1", None, c2)
        server.service.update_ref("refs/tags/v1", c2, c1)
        assert server.refs.read("refs/tags/v1") == c1

    def test_unrelated_history_rejected(self, server, make_client, author):
        client = make_client()
        c1 = client.commit({"f": b"1"}, "C1")
        engine(client, server.remote).push("main")
        tree = server.objects.put_object(Tree())
        orphan = server.objects.put_object(
            Commit(tree, None, "orphan", author.name, author.email, 5))
        with pytest.raises(NonFastForward):
            server.service.update_ref(MAIN, c1, orphan)
