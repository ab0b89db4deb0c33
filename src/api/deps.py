"""FastAPI dependencies for the Supabase-backed stores."""

from __future__ import annotations

from src.lookup.store import EntityStore, SupabaseEntityStore
from src.threads.store import SupabaseThreadStore, ThreadStore


def get_entity_store() -> EntityStore:
    return SupabaseEntityStore()


def get_thread_store() -> ThreadStore:
    return SupabaseThreadStore()
