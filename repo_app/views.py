import logging

from django.db import IntegrityError, transaction
from django.http import HttpRequest, HttpResponse, JsonResponse

from cts_core.errors import InvalidInput, ReferenceNotFound
from cts_core.objects import check_digest
from cts_core.store import TAG, branch_ref, ref_kind, validate_ref_name

from .helpers import (
    api_view, decode_hex, get_repository, get_service, json_body, validate_repository_name,
)
from .models import Repository

logger = logging.getLogger(__name__)


@api_view('GET', 'POST')
def repositories(request: HttpRequest) -> JsonResponse:
    if request.method == 'GET':
        repos = Repository.objects.order_by('name')
        return JsonResponse({"repositories": [repo.to_dict() for repo in repos]})

    data = json_body(request)
    name = validate_repository_name(data.get('name'))
    description = data.get('description') or ''
    default_branch = data.get('default_branch') or 'main'
    if not isinstance(description, str):
        raise InvalidInput("description must be a string", field="description")
    if not isinstance(default_branch, str):
        raise InvalidInput("default_branch must be a string", field="default_branch")
    branch_ref(default_branch)
    try:
        with transaction.atomic():
            repo = Repository.objects.create(name=name, description=description,
                                             default_branch=default_branch)
    except IntegrityError:
        raise InvalidInput(f"repository {name!r} already exists", field="name")
    logger.info("created repository %s (%s)", repo.name, repo.id)
    return JsonResponse(repo.to_dict(), status=201)


@api_view('GET', 'DELETE')
def repository_detail(request: HttpRequest, repository_id: str) -> HttpResponse:
    repo = get_repository(repository_id)
    if request.method == 'DELETE':
        repo.delete()
        logger.info("deleted repository %s (%s)", repo.name, repository_id)
        return HttpResponse(status=204)
    return JsonResponse(repo.to_dict())


@api_view('GET')
def ref_list(request: HttpRequest, repository_id: str) -> JsonResponse:
    repo = get_repository(repository_id)
    return JsonResponse({"refs": [ref.to_dict() for ref in repo.references.order_by('name')]})


def _ref_payload(repo, name):
    ref = repo.references.filter(name=name).first()
    if ref is None:
        raise ReferenceNotFound(name)
    return ref.to_dict()


@api_view('GET', 'POST')
def ref_detail(request: HttpRequest, repository_id: str, name: str) -> JsonResponse:
    repo = get_repository(repository_id)
    if request.method == 'GET':
        validate_ref_name(name)
        return JsonResponse(_ref_payload(repo, name))

    data = json_body(request)
    if 'new' not in data:
        raise InvalidInput("missing field 'new'", field="new")
    message = data.get('message')
    if message is not None:
        if not isinstance(message, str):
            raise InvalidInput("message must be a string", field="message")
        if ref_kind(name) != TAG:
            raise InvalidInput("only tags carry a message", field="message")
    with transaction.atomic():
        get_service(repo).update_ref(name, data.get('expected_old'), data['new'])
        if message is not None:
            repo.references.filter(name=name).update(message=message)
    return JsonResponse(_ref_payload(repo, name))


@api_view('POST')
def objects_missing(request: HttpRequest, repository_id: str) -> JsonResponse:
    service = get_service(get_repository(repository_id))
    digests = json_body(request).get('digests')
    if not isinstance(digests, list):
        raise InvalidInput("digests must be a list", field="digests")
    return JsonResponse({"missing": sorted(service.missing(digests))})


@api_view('POST')
def object_upload(request: HttpRequest, repository_id: str) -> JsonResponse:
    service = get_service(get_repository(repository_id))
    data = json_body(request)
    digest = data.get('digest')
    if not isinstance(digest, str):
        raise InvalidInput("missing field 'digest'", field="digest")
    stored = service.receive(digest, decode_hex(data.get('data'), 'data'), data.get('kind'))
    return JsonResponse({"digest": stored}, status=201)


@api_view('GET')
def object_detail(request: HttpRequest, repository_id: str, digest: str) -> JsonResponse:
    service = get_service(get_repository(repository_id))
    kind, data = service.send(digest)
    return JsonResponse({"digest": digest, "kind": kind, "size": len(data), "data": data.hex()})


# -- browsing ---------------------------------------------------------------------


def _commit_payload(commit):
    return {
        "digest": commit.digest,
        "tree": commit.tree,
        "parent": commit.parent,
        "author_name": commit.author_name,
        "author_email": commit.author_email,
        "timestamp": commit.timestamp,
        "message": commit.message,
    }


def _revision(request, repo, service):
    return service.resolve(request.GET.get('ref') or repo.default_branch)


@api_view('GET')
def commit_list(request: HttpRequest, repository_id: str) -> JsonResponse:
    repo = get_repository(repository_id)
    service = get_service(repo)
    limit = request.GET.get('limit')
    if limit is not None:
        if not (limit.isascii() and limit.isdigit()) or int(limit) < 1:
            raise InvalidInput("limit must be a positive integer", field="limit")
        limit = int(limit)
    head = _revision(request, repo, service)
    commits = service.history(head, limit)
    return JsonResponse({"head": head, "commits": [_commit_payload(c) for c in commits]})


@api_view('GET')
def commit_detail(request: HttpRequest, repository_id: str, digest: str) -> JsonResponse:
    service = get_service(get_repository(repository_id))
    check_digest(digest)
    return JsonResponse(_commit_payload(service.graph.get(digest)))


@api_view('GET')
def tree_view(request: HttpRequest, repository_id: str) -> JsonResponse:
    repo = get_repository(repository_id)
    service = get_service(repo)
    commit = _revision(request, repo, service)
    path = request.GET.get('path', '').strip('/')
    digest, tree = service.tree_at(commit, path)
    entries = [{"name": e.name, "kind": e.kind, "mode": e.mode, "digest": e.digest} for e in tree.entries]
    return JsonResponse({"commit": commit, "path": path, "digest": digest, "entries": entries})


@api_view('GET')
def blob_view(request: HttpRequest, repository_id: str, path: str) -> JsonResponse:
    repo = get_repository(repository_id)
    service = get_service(repo)
    commit = _revision(request, repo, service)
    entry, blob = service.blob_at(commit, path)
    return JsonResponse({
        "commit": commit,
        "path": path.strip('/'),
        "digest": entry.digest,
        "mode": entry.mode,
        "size": blob.size,
        "data": blob.data.hex(),
        "text": blob.data.decode(errors='replace') if blob.is_text() else None,
    })
