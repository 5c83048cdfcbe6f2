"""Deterministic remote instance naming."""

from __future__ import annotations

import hashlib

INSTANCE_NAME_PREFIX = 'preview-'
INSTANCE_NAME_HASH_LENGTH = 8
# Fly app names are DNS labels.
MAX_INSTANCE_NAME_LENGTH = 63


def build_instance_name(user_id: str | None, project_id: str) -> str:
    """Return ``preview-<8 hex>`` for a ``(user_id, project_id)`` identity.

    The same identity always yields the same name. A missing user id hashes
    as the empty string.
    """
    seed = f'{user_id or ""}-{project_id}'
    digest = hashlib.md5(seed.encode('utf-8'), usedforsecurity=False).hexdigest()
    name = INSTANCE_NAME_PREFIX + digest[:INSTANCE_NAME_HASH_LENGTH]
    return name[:MAX_INSTANCE_NAME_LENGTH]


def build_preview_url(instance_name: str, template: str) -> str:
    """Render the public preview URL, e.g. ``https://{name}.fly.dev``."""
    return template.format(name=instance_name)
