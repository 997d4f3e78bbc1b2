import uuid

from django.db import models

OBJECT_KINDS = [('blob', 'Blob'), ('tree', 'Tree'), ('commit', 'Commit')]
REF_KINDS = [('branch', 'Branch'), ('tag', 'Tag')]


class Repository(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default='')
    default_branch = models.CharField(max_length=100, default='main')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "default_branch": self.default_branch,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class StoredObject(models.Model):
    """Canonical bytes of one blob, tree or commit, keyed by SHA-256 digest"""
    repository = models.ForeignKey(Repository, on_delete=models.CASCADE, related_name='objects_set')
    digest = models.CharField(max_length=64, db_index=True)
    kind = models.CharField(max_length=10, choices=OBJECT_KINDS)
    size = models.PositiveBigIntegerField()
    data = models.BinaryField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['repository', 'digest'], name='uniq_object_per_repository'),
        ]


class Reference(models.Model):
    """Branch and tag pointers like 'refs/heads/main'"""
    repository = models.ForeignKey(Repository, on_delete=models.CASCADE, related_name='references')
    name = models.CharField(max_length=255)
    kind = models.CharField(max_length=10, choices=REF_KINDS)
    target = models.CharField(max_length=64)
    message = models.TextField(blank=True, default='')  # tags only
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['repository', 'name'], name='uniq_ref_per_repository'),
        ]
        ordering = ['name']

    def to_dict(self):
        payload = {"name": self.name, "kind": self.kind, "target": self.target}
        if self.kind == 'tag':
            payload["message"] = self.message
        return payload
