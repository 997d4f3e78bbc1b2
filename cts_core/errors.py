"""Error taxonomy shared by the client, the sync engine and the server.

Every error names the digest, reference or repository it is about so a
caller never has to parse the message.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CtsError(Exception):
    """Base class for every engine failure."""

    code = "CtsError"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class CorruptObject(CtsError):
    code = "CorruptObject"

    def __init__(self, reason: str, digest: Optional[str] = None) -> None:
        where = f" {digest}" if digest else ""
        super().__init__(f"corrupt object{where}: {reason}", digest=digest, reason=reason)
        self.digest = digest
        self.reason = reason


class HashMismatch(CtsError):
    code = "HashMismatch"

    def __init__(self, digest: str, actual: Optional[str] = None) -> None:
        if actual:
            message = f"content hashes to {actual}, not {digest}"
        else:
            message = f"different content already stored under {digest}"
        super().__init__(message, digest=digest, actual=actual)
        self.digest = digest
        self.actual = actual


class ObjectNotFound(CtsError):
    code = "ObjectNotFound"

    def __init__(self, digest: str) -> None:
        super().__init__(f"object not found: {digest}", digest=digest)
        self.digest = digest


class RepositoryNotFound(CtsError):
    code = "RepositoryNotFound"

    def __init__(self, repository: str) -> None:
        super().__init__(f"repository not found: {repository}", repository=repository)
        self.repository = repository


class ReferenceNotFound(CtsError):
    code = "ReferenceNotFound"

    def __init__(self, ref: str) -> None:
        super().__init__(f"reference not found: {ref}", ref=ref)
        self.ref = ref


class PathNotFound(CtsError):
    code = "PathNotFound"

    def __init__(self, path: str, commit: Optional[str] = None) -> None:
        where = f" in {commit}" if commit else ""
        super().__init__(f"path not found{where}: {path}", path=path, commit=commit)
        self.path = path
        self.commit = commit


class RefConflict(CtsError):
    code = "RefConflict"

    def __init__(self, ref: str, expected: Optional[str], actual: Optional[str]) -> None:
        super().__init__(
            f"reference {ref} is at {actual or '(unborn)'}, expected {expected or '(unborn)'}",
            ref=ref, expected=expected, current=actual,
        )
        self.ref = ref
        self.expected = expected
        self.actual = actual


class NonFastForward(CtsError):
    code = "NonFastForward"

    def __init__(self, ref: str, old: Optional[str], new: Optional[str]) -> None:
        super().__init__(
            f"{ref}: {new} does not fast-forward {old or '(unborn)'}",
            ref=ref, old=old, new=new,
        )
        self.ref = ref
        self.old = old
        self.new = new


class NothingToCommit(CtsError):
    code = "NothingToCommit"

    def __init__(self, ref: Optional[str] = None) -> None:
        super().__init__("nothing to commit, working tree clean", ref=ref)
        self.ref = ref


class NetworkFailure(CtsError):
    code = "NetworkFailure"

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message, url=url, status=status)
        self.url = url
        self.status = status


class InvalidInput(CtsError, ValueError):
    code = "InvalidInput"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, field=field)
        self.field = field


class NotARepository(CtsError):
    code = "NotARepository"

    def __init__(self, path: str) -> None:
        super().__init__(f"not a cts repository (or any of the parent directories): {path}", path=path)
        self.path = path


class SyncCancelled(CtsError):
    code = "SyncCancelled"

    def __init__(self, ref: str) -> None:
        super().__init__(f"synchronization of {ref} cancelled", ref=ref)
        self.ref = ref


def error_from_payload(payload: Dict[str, Any], status: Optional[int] = None) -> CtsError:
    """Rebuild the exception a server reported in a JSON error body."""
    code = payload.get("error")
    message = payload.get("message") or f"server error {status}"
    if code == "CorruptObject":
        return CorruptObject(payload.get("reason", message), payload.get("digest"))
    if code == "HashMismatch":
        return HashMismatch(payload.get("digest", ""), payload.get("actual"))
    if code == "ObjectNotFound":
        return ObjectNotFound(payload.get("digest", ""))
    if code == "RepositoryNotFound":
        return RepositoryNotFound(payload.get("repository", ""))
    if code == "ReferenceNotFound":
        return ReferenceNotFound(payload.get("ref", ""))
    if code == "PathNotFound":
        return PathNotFound(payload.get("path", ""), payload.get("commit"))
    if code == "RefConflict":
        return RefConflict(payload.get("ref", ""), payload.get("expected"), payload.get("current"))
    if code == "NonFastForward":
        return NonFastForward(payload.get("ref", ""), payload.get("old"), payload.get("new"))
    if code == "InvalidInput":
        return InvalidInput(message, payload.get("field"))
    return NetworkFailure(message, status=status)
