"""Supabase-backed preview record store.

Implements the ``PreviewRecordStore`` protocol against the
``preview_instances`` table. Duplicate suppression relies on a unique index
over ``(project_id, user_id)`` created ``NULLS NOT DISTINCT`` so anonymous
previews are unique per project too:

    create unique index ux_preview_instances_identity
        on preview_instances (project_id, user_id) nulls not distinct;

A 409 from that index surfaces as ``DuplicatePreviewError``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..errors import DuplicatePreviewError
from ..provisioning.records import PreviewInstance
from .errors import UNIQUE_VIOLATION, SupabaseConflictError, SupabaseError
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

TABLE = "preview_instances"


class SupabasePreviewRecordStore:
    """Preview record CRUD backed by Supabase PostgREST."""

    def __init__(self, client: SupabaseClient, *, table: str = TABLE) -> None:
        self._client = client
        self._table = table

    async def get(self, record_id: str) -> PreviewInstance | None:
        rows = await self._client.select(self._table, {"id": record_id}, limit=1)
        return PreviewInstance.from_row(rows[0]) if rows else None

    async def find_by_identity(
        self, project_id: str, user_id: str | None,
    ) -> PreviewInstance | None:
        rows = await self._client.select(
            self._table,
            {"project_id": project_id, "user_id": user_id},
            limit=1,
            order="created_at.asc",
        )
        return PreviewInstance.from_row(rows[0]) if rows else None

    async def insert(self, record: PreviewInstance) -> PreviewInstance:
        """Insert a new record.

        Raises:
            DuplicatePreviewError: When the identity index rejects the row.
        """
        try:
            rows = await self._client.insert(self._table, record.to_row())
        except SupabaseError as exc:
            if not isinstance(exc, SupabaseConflictError) and exc.code != UNIQUE_VIOLATION:
                raise
            logger.info(
                "Preview identity conflict: project=%s",
                record.project_id,
                extra={"project_id": record.project_id, "code": exc.code},
            )
            raise DuplicatePreviewError(record.project_id, record.user_id) from exc
        return PreviewInstance.from_row(rows[0]) if rows else record

    async def update(self, record_id: str, **fields: Any) -> PreviewInstance | None:
        now = fields.pop("updated_at", None) or datetime.now(timezone.utc)
        row: dict[str, Any] = {**fields, "updated_at": now.isoformat()}
        rows = await self._client.update(self._table, {"id": record_id}, row)
        return PreviewInstance.from_row(rows[0]) if rows else None

    async def list_for_user(self, user_id: str | None) -> list[PreviewInstance]:
        """All previews for a user, newest first."""
        rows = await self._client.select(
            self._table,
            {"user_id": user_id},
            order="created_at.desc",
        )
        return [PreviewInstance.from_row(row) for row in rows]
