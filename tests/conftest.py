# Shared pytest fixtures for cts tests

import json as jsonlib
import os
from urllib.parse import urlsplit

import pytest
import requests

from cts_core.index import WorkingIndex
from cts_core.memory import MemoryObjectStore, MemoryRefStore
from cts_core.objects import Author
from cts_core.remote import LocalRemote
from cts_core.service import RepositoryService
from cts_core.workspace import Workspace

TEST_AUTHOR = Author("Test User", "test@example.com")


@pytest.fixture
def objects():
    return MemoryObjectStore()


@pytest.fixture
def refs():
    return MemoryRefStore()


@pytest.fixture
def author():
    return TEST_AUTHOR


@pytest.fixture
def index(objects, refs):
    # In-memory staging area on branch main
    return WorkingIndex(objects, refs, "main")


class Clock:
    # Deterministic commit timestamps
    def __init__(self, start=1700000000):
        self.now = start

    def __call__(self):
        self.now += 1
        return self.now


@pytest.fixture
def clock():
    return Clock()


def commit_files(index, files, message, clock, author=TEST_AUTHOR):
    # Stages every path -> content pair and commits
    for path, content in files.items():
        if content is None:
            index.remove(path)
        else:
            index.stage(path, content)
    return index.commit(message, author, timestamp=clock())


class Server:
    # A server repository living in memory, reachable through LocalRemote
    def __init__(self, **kwargs):
        self.objects = MemoryObjectStore()
        self.refs = MemoryRefStore()
        self.service = RepositoryService(self.objects, self.refs, **kwargs)
        self.remote = LocalRemote(self.service)


@pytest.fixture
def server():
    return Server()


class Client:
    # A client with its own stores and staging area on main
    def __init__(self, clock):
        self.objects = MemoryObjectStore()
        self.refs = MemoryRefStore()
        self.index = WorkingIndex(self.objects, self.refs, "main")
        self.clock = clock

    def commit(self, files, message):
        return commit_files(self.index, files, message, self.clock)


@pytest.fixture
def make_client(clock):
    return lambda: Client(clock)


@pytest.fixture
def temp_dir(tmp_path):
    # Temporary working directory; cwd is restored after the test
    original_dir = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(original_dir)


@pytest.fixture
def workspace(temp_dir):
    # Initialized workspace with an author identity
    ws = Workspace.init(temp_dir)
    ws.config.set("user.name", TEST_AUTHOR.name)
    ws.config.set("user.email", TEST_AUTHOR.email)
    return ws


class DjangoTestSession:
    """requests-compatible session that routes calls into the Django test client.

    Lets HttpRemote talk to the real views without a running server.
    """

    def __init__(self, client):
        self.client = client
        self.calls = []

    def request(self, method, url, json=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path))
        if json is None:
            response = self.client.generic(method, path)
        else:
            response = self.client.generic(method, path, data=jsonlib.dumps(json),
                                           content_type="application/json")
        resp = requests.Response()
        resp.status_code = response.status_code
        resp._content = response.content
        resp.url = url
        return resp


@pytest.fixture
def api_session(client):
    return DjangoTestSession(client)


@pytest.fixture
def commit(index, clock):
    # commit({"path": b"content" or None}, "message") on the index fixture
    return lambda files, message: commit_files(index, files, message, clock)


@pytest.fixture
def repository(db):
    # Server repository row for the Django-backed stores
    from repo_app.models import Repository
    return Repository.objects.create(name="store-test")
