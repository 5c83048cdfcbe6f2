"""Supabase persistence for preview records."""

from .errors import SupabaseAuthError, SupabaseConflictError, SupabaseError
from .preview_repo import SupabasePreviewRecordStore
from .supabase_client import SupabaseClient

__all__ = [
    "SupabaseAuthError",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseError",
    "SupabasePreviewRecordStore",
]
