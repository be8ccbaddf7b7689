"""
Best-effort removal of dependent records when their owner is deleted.
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Dict, Mapping, Sequence

from recordkeeper.db import RecordStore
from recordkeeper.documents import COLLECTIONS, CollectionSpec, Dependent
from recordkeeper.storage import AssetStore

logger = logging.getLogger(__name__)


class CascadeCoordinator:
    """
    Deletes every document in the registered dependent collections whose
    foreign key equals the owner id.

    Dependent collections are processed in parallel. A failure in one of them
    is logged and does not stop the others; nothing is rolled back. Running a
    cascade twice is harmless since the second pass matches nothing.
    """

    def __init__(
        self,
        store: RecordStore,
        assets: AssetStore,
        dependents: Sequence[Dependent],
        *,
        collections: Mapping[str, CollectionSpec] = COLLECTIONS,
        max_workers: int = 8,
    ):
        self.store = store
        self.assets = assets
        self.dependents = tuple(dependents)
        self.collections = collections
        self.max_workers = max_workers

    def cascade_delete(self, owner_id: str) -> Dict[str, int]:
        """Return the number of documents removed per dependent collection."""
        if not self.dependents:
            return {}
        counts: Dict[str, int] = {}
        workers = min(len(self.dependents), self.max_workers)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._delete_dependents, dependent, owner_id): dependent
                for dependent in self.dependents
            }
            for future in concurrent.futures.as_completed(futures):
                dependent = futures[future]
                try:
                    counts[dependent.collection] = future.result()
                except Exception:
                    logger.exception(
                        "Cascade delete of %s for owner %s failed",
                        dependent.collection,
                        owner_id,
                    )
        logger.info("Cascade for owner %s removed %s", owner_id, counts)
        return counts

    def _delete_dependents(self, dependent: Dependent, owner_id: str) -> int:
        spec = self.collections.get(dependent.collection)
        if spec is not None and spec.asset_field:
            self._release_dependent_assets(spec, dependent, owner_id)
        return self.store.delete_many(dependent.collection, dependent.foreign_key, owner_id)

    def _release_dependent_assets(
        self, spec: CollectionSpec, dependent: Dependent, owner_id: str
    ) -> None:
        docs = self.store.find_many(dependent.collection, dependent.foreign_key, owner_id)
        external_ids = [
            reference["external_id"]
            for doc in docs
            for reference in doc.get(spec.asset_field) or []
        ]
        if not external_ids:
            return
        try:
            self.assets.delete_many(external_ids)
        except Exception:
            logger.exception(
                "Could not release %d assets of %s owned by %s; they are orphaned",
                len(external_ids),
                dependent.collection,
                owner_id,
            )
