"""
Case-insensitive duplicate-name checks scoped to one collection.
"""

from __future__ import annotations

from typing import Optional

from recordkeeper.db import RecordStore


class UniquenessGuard:
    """
    Checks a candidate name against the existing records of a collection.

    Matching uses the same Unicode case fold as the record store, so
    ``"Widget"`` collides with ``"widget"`` and ``"Straße"`` with ``"STRASSE"``.
    """

    def __init__(self, store: RecordStore, collection: str, field: str):
        self.store = store
        self.collection = collection
        self.field = field

    def check_unique(self, candidate_name: str, exclude_id: Optional[str] = None) -> bool:
        """Return True when another record already uses ``candidate_name``."""
        match = self.store.find_one_case_insensitive(
            self.collection, self.field, candidate_name, exclude_id=exclude_id
        )
        return match is not None
