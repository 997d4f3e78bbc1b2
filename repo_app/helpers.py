import functools
import json
import logging
import re

from django.conf import settings
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from cts_core.errors import (
    CorruptObject, CtsError, HashMismatch, InvalidInput, NonFastForward, ObjectNotFound,
    PathNotFound, RefConflict, ReferenceNotFound, RepositoryNotFound,
)
from cts_core.service import RepositoryService

from .models import Repository
from .stores import DjangoObjectStore, DjangoRefStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidInput: 400,
    RepositoryNotFound: 404,
    ReferenceNotFound: 404,
    ObjectNotFound: 404,
    PathNotFound: 404,
    RefConflict: 409,
    NonFastForward: 409,
    CorruptObject: 422,
    HashMismatch: 422,
}

REPOSITORY_NAME = re.compile(r'^[A-Za-z0-9_-]{1,100}$')


def status_for(exc: CtsError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def api_view(*methods):
    """JSON endpoint: method check, CSRF exemption, CtsError -> JSON error body."""
    def decorator(view):
        @csrf_exempt
        @functools.wraps(view)
        def wrapper(request, *args, **kwargs):
            if request.method not in methods:
                return JsonResponse(
                    {"error": "MethodNotAllowed", "message": f"{request.method} not allowed"},
                    status=405,
                    headers={"Allow": ", ".join(methods)},
                )
            try:
                return view(request, *args, **kwargs)
            except CtsError as exc:
                status = status_for(exc)
                if status >= 500:
                    logger.exception("%s %s failed", request.method, request.path)
                else:
                    logger.info("%s %s -> %s %s", request.method, request.path, status, exc.code)
                return JsonResponse(exc.to_dict(), status=status)
        return wrapper
    return decorator


def json_body(request) -> dict:
    try:
        data = json.loads(request.body or b'{}')
    except ValueError:
        raise InvalidInput("request body is not valid JSON", field="body")
    if not isinstance(data, dict):
        raise InvalidInput("request body must be a JSON object", field="body")
    return data


def get_repository(repository_id) -> Repository:
    try:
        repository = Repository.objects.filter(pk=repository_id).first()
    except ValidationError:
        repository = None
    if repository is None:
        raise RepositoryNotFound(str(repository_id))
    return repository


def get_service(repository: Repository) -> RepositoryService:
    return RepositoryService(
        DjangoObjectStore(repository),
        DjangoRefStore(repository),
        verify_connectivity=settings.CTS_VERIFY_CONNECTIVITY,
        max_object_size=settings.CTS_MAX_OBJECT_SIZE,
    )


def validate_repository_name(name) -> str:
    if not isinstance(name, str) or not REPOSITORY_NAME.match(name):
        raise InvalidInput(
            "repository name must be 1-100 letters, digits, hyphens or underscores", field="name")
    return name


def decode_hex(value, field: str) -> bytes:
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a hex string", field=field)
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise InvalidInput(f"{field} is not valid hex", field=field)
