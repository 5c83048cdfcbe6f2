"""PostgREST error hierarchy.

Kept free of httpx types so repositories can raise and catch them without
holding on to responses (which carry the service-role key in their request).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """Failed PostgREST request."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None

    def __str__(self) -> str:
        text = f"supabase request failed ({self.status_code}): {self.message}"
        if self.code:
            text += f" [code={self.code}]"
        return text


class SupabaseAuthError(SupabaseError):
    """401/403: bad key or row-level security rejection."""


class SupabaseConflictError(SupabaseError):
    """409: unique or foreign-key violation."""


# Postgres SQLSTATE for unique_violation.
UNIQUE_VIOLATION = "23505"
