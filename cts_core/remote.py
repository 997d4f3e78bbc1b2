"""Transport port between the client and a server repository."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import quote

import requests

from . import codec
from .errors import NetworkFailure, ReferenceNotFound, error_from_payload
from .service import RepositoryService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class Remote(ABC):
    """What the sync engine needs from the other side."""

    @abstractmethod
    def read_ref(self, name: str) -> Optional[str]:
        """Current target of *name*, or None when the ref is unborn."""

    @abstractmethod
    def compare_and_set(self, name: str, expected_old: Optional[str], new: str) -> None:
        ...

    @abstractmethod
    def list_refs(self) -> List[Tuple[str, str]]:
        ...

    @abstractmethod
    def missing(self, digests: Iterable[str]) -> Set[str]:
        ...

    @abstractmethod
    def upload(self, digest: str, data: bytes) -> None:
        ...

    @abstractmethod
    def download(self, digest: str) -> bytes:
        ...


class LocalRemote(Remote):
    def __init__(self, service: RepositoryService) -> None:
        self.service = service

    def read_ref(self, name):
        return self.service.head(name)

    def compare_and_set(self, name, expected_old, new):
        self.service.update_ref(name, expected_old, new)

    def list_refs(self):
        return self.service.list_refs()

    def missing(self, digests):
        return self.service.missing(digests)

    def upload(self, digest, data):
        self.service.receive(digest, bytes(data))

    def download(self, digest):
        _, data = self.service.send(digest)
        return bytes(data)


def _request(session, method: str, url: str, timeout: float, payload: Optional[Dict[str, Any]] = None):
    logger.debug("%s %s", method, url)
    try:
        resp = session.request(method, url, json=payload, timeout=timeout)
    except requests.Timeout as exc:
        raise NetworkFailure(f"{method} {url} timed out", url=url) from exc
    except requests.RequestException as exc:
        raise NetworkFailure(f"{method} {url} failed: {exc}", url=url) from exc

    if resp.status_code >= 500:
        raise NetworkFailure(f"{method} {url} returned {resp.status_code}", url=url, status=resp.status_code)
    body: Dict[str, Any] = {}
    if resp.content:
        try:
            body = resp.json()
        except ValueError as exc:
            raise NetworkFailure(f"{method} {url} returned invalid JSON", url=url,
                                 status=resp.status_code) from exc
    if resp.status_code >= 400:
        raise error_from_payload(body, resp.status_code)
    return body


def create_repository(base_url: str, name: str, description: str = "", default_branch: str = "main",
                      session=None, timeout: float = DEFAULT_TIMEOUT) -> Dict[str, Any]:
    session = session or requests.Session()
    payload = {"name": name, "description": description, "default_branch": default_branch}
    return _request(session, "POST", f"{base_url.rstrip('/')}/repositories", timeout, payload)


class HttpRemote(Remote):
    """JSON-over-HTTP client for the ``repo_app`` API."""

    def __init__(self, base_url: str, repository_id, session=None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.repository_id = str(repository_id)
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, *parts: str) -> str:
        return "/".join((self.base_url, "repositories", self.repository_id) + parts)

    def _ref_url(self, name: str) -> str:
        # "#" and "%" are legal in ref names
        return self._url("refs", quote(name, safe="/"))

    def _call(self, method: str, url: str, payload=None):
        return _request(self.session, method, url, self.timeout, payload)

    def info(self) -> Dict[str, Any]:
        return self._call("GET", self._url())

    def read_ref(self, name):
        try:
            return self._call("GET", self._ref_url(name))["target"]
        except ReferenceNotFound:
            return None

    def compare_and_set(self, name, expected_old, new):
        self._call("POST", self._ref_url(name), {"expected_old": expected_old, "new": new})

    def list_refs(self):
        body = self._call("GET", self._url("refs"))
        return [(ref["name"], ref["target"]) for ref in body["refs"]]

    def missing(self, digests):
        body = self._call("POST", self._url("objects:missing"), {"digests": sorted(set(digests))})
        return set(body["missing"])

    def upload(self, digest, data):
        kind, _ = codec.read_header(data, digest)
        self._call("POST", self._url("objects"), {"digest": digest, "kind": kind, "data": bytes(data).hex()})

    def download(self, digest):
        body = self._call("GET", self._url("objects", digest))
        try:
            return bytes.fromhex(body["data"])
        except (KeyError, TypeError, ValueError) as exc:
            raise NetworkFailure(f"malformed object payload for {digest}", url=self._url("objects", digest)) from exc
