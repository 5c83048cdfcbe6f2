"""Preview instance record."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Mapping

from .state_machine import PROVISIONING


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PreviewInstance:
    """Row-level representation aligned with the ``preview_instances`` table."""

    id: str
    project_id: str
    user_id: str | None
    owner: str
    repo: str
    branch: str
    instance_name: str
    status: str = PROVISIONING
    preview_url: str | None = None
    port: int | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def owner_repo(self) -> str:
        return f'{self.owner}/{self.repo}'

    def to_public_dict(self) -> dict[str, Any]:
        """Request-surface shape (camelCase)."""
        return {
            'id': self.id,
            'status': self.status,
            'previewUrl': self.preview_url,
            'port': self.port,
            'errorMessage': self.error_message,
            'instanceName': self.instance_name,
            'projectId': self.project_id,
            'userId': self.user_id,
            'owner': self.owner,
            'repo': self.repo,
            'branch': self.branch,
        }

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row['created_at'] = self.created_at.isoformat()
        row['updated_at'] = self.updated_at.isoformat()
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> PreviewInstance:
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in row.items() if key in known}
        for key in ('created_at', 'updated_at'):
            value = data.get(key)
            if isinstance(value, str):
                data[key] = _parse_timestamp(value)
            elif value is None:
                data.pop(key, None)
        return cls(**data)


def _parse_timestamp(value: str) -> datetime:
    # PostgREST renders UTC as a trailing 'Z' on some versions.
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value)
