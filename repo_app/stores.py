"""Object and reference stores backed by the repo_app tables.

Both are bound to a single :class:`~repo_app.models.Repository`.
"""

import logging

from django.db import IntegrityError, transaction

from cts_core.errors import RefConflict
from cts_core.store import ObjectStore, RefStore, ref_kind

from .models import Reference, StoredObject

logger = logging.getLogger(__name__)


class DjangoObjectStore(ObjectStore):
    def __init__(self, repository, **kwargs):
        super().__init__(**kwargs)
        self.repository = repository

    def _rows(self):
        return StoredObject.objects.filter(repository=self.repository)

    def _load(self, digest):
        data = self._rows().filter(digest=digest).values_list('data', flat=True).first()
        return None if data is None else bytes(data)

    def _exists(self, digest):
        return self._rows().filter(digest=digest).exists()

    def _store(self, digest, kind, data):
        try:
            with transaction.atomic():
                StoredObject.objects.create(
                    repository=self.repository,
                    digest=digest,
                    kind=kind,
                    size=len(data),
                    data=data,
                )
        except IntegrityError:
            # lost a race with another upload of the same digest
            logger.debug("object %s inserted concurrently", digest)
            return self._load(digest)
        return data

    def missing(self, candidates):
        candidates = set(candidates)
        present = set(self._rows().filter(digest__in=candidates).values_list('digest', flat=True))
        return candidates - present

    def __iter__(self):
        return iter(list(self._rows().order_by('digest').values_list('digest', flat=True)))

    def __len__(self):
        return self._rows().count()


class DjangoRefStore(RefStore):
    def __init__(self, repository):
        self.repository = repository

    def _rows(self):
        return Reference.objects.filter(repository=self.repository)

    def _get(self, name):
        return self._rows().filter(name=name).values_list('target', flat=True).first()

    def compare_and_set(self, name, expected_old, new):
        self._check_update(name, new)
        if expected_old is None:
            self._check_namespace(name)
            try:
                with transaction.atomic():
                    Reference.objects.create(repository=self.repository, name=name,
                                             kind=ref_kind(name), target=new)
                return
            except IntegrityError:
                raise RefConflict(name, None, self._get(name))
        # conditional UPDATE: zero rows means someone else moved the ref first
        updated = self._rows().filter(name=name, target=expected_old).update(target=new)
        if not updated:
            raise RefConflict(name, expected_old, self._get(name))

    def list(self):
        return list(self._rows().order_by('name').values_list('name', 'target'))
