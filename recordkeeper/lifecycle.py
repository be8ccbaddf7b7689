"""
Record lifecycle: create, update and delete with external asset synchronization.

Record documents and the assets they reference live in two systems that fail
independently and share no transaction. Writes follow upload-then-commit and
delete-old-after-commit, so the failure modes left behind are orphaned assets
(logged) rather than references to assets that no longer exist.
"""

from __future__ import annotations

import concurrent.futures
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from recordkeeper.cascade import CascadeCoordinator
from recordkeeper.db import RecordStore
from recordkeeper.documents import (
    SYSTEM_FIELDS,
    AssetReference,
    CollectionSpec,
    fold_name,
    is_valid_record_id,
)
from recordkeeper.errors import DuplicateError, NotFoundError, ValidationError
from recordkeeper.storage import AssetStore
from recordkeeper.uniqueness import UniquenessGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    """A binary payload supplied by the caller, e.g. an uploaded image."""

    filename: str
    content: bytes
    content_type: Optional[str] = None


class RecordLifecycleManager:
    """
    Orchestrates the lifecycle of the records of one collection.

    Composes the uniqueness guard, the asset store and the record store, and
    hands dependent records to the cascade coordinator on delete.
    """

    def __init__(
        self,
        spec: CollectionSpec,
        store: RecordStore,
        assets: AssetStore,
        *,
        guard: Optional[UniquenessGuard] = None,
        cascade: Optional[CascadeCoordinator] = None,
        max_workers: int = 8,
        asset_key_prefix: str = "",
    ):
        self.spec = spec
        self.store = store
        self.assets = assets
        self.max_workers = max_workers
        self.asset_key_prefix = asset_key_prefix.strip("/")
        if guard is None and spec.unique_field:
            guard = UniquenessGuard(store, spec.name, spec.unique_field)
        self.guard = guard
        if cascade is None:
            cascade = CascadeCoordinator(
                store, assets, spec.dependents, max_workers=max_workers
            )
        self.cascade = cascade

    # Reads

    def list(self) -> List[dict]:
        return [self.public_view(doc) for doc in self.store.list_documents(self.spec.name)]

    def get(self, record_id: str) -> dict:
        return self.public_view(self._require(record_id))

    # Writes

    def create(self, fields: Mapping[str, Any], attachments: Sequence[Attachment] = ()) -> dict:
        document = self._clean_fields(fields)
        self._check_attachments_allowed(attachments)
        if self.spec.asset_field and not attachments:
            raise ValidationError("At least one image is required")

        name = self._distinguishing_name(document)
        if name is not None and self.guard.check_unique(name):
            raise DuplicateError(f"Duplicate {self.spec.unique_field}: {name}")

        references: List[dict] = []
        if self.spec.asset_field:
            references = self._upload_all(attachments)
            document[self.spec.asset_field] = references

        try:
            created = self.store.create(self.spec.name, document)
        except Exception:
            self._release(_external_ids(references), reason="create failed")
            raise

        logger.info(
            "Created %s %s with %d assets",
            self.spec.label.lower(),
            created["id"],
            len(references),
        )
        return self.public_view(created)

    def update(
        self,
        record_id: str,
        fields: Mapping[str, Any],
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> dict:
        existing = self._require(record_id)
        patch = self._clean_fields(fields)
        self._check_attachments_allowed(attachments or ())

        name = self._distinguishing_name(patch)
        current = existing.get(self.spec.unique_field) if self.spec.unique_field else None
        if name is not None and (
            not isinstance(current, str) or fold_name(name) != fold_name(current)
        ):
            if self.guard.check_unique(name, exclude_id=record_id):
                raise DuplicateError(f"Duplicate {self.spec.unique_field}: {name}")

        # Any new attachment replaces the whole asset set; no diffing.
        replaced: List[dict] = []
        uploaded: List[dict] = []
        if attachments:
            replaced = list(existing.get(self.spec.asset_field) or [])
            uploaded = self._upload_all(attachments)
            patch[self.spec.asset_field] = uploaded

        try:
            updated = self.store.update_by_id(self.spec.name, record_id, patch, validate=True)
        except Exception:
            self._release(_external_ids(uploaded), reason="update failed")
            raise
        if updated is None:
            self._release(_external_ids(uploaded), reason="record vanished")
            raise NotFoundError(self._not_found_message(record_id))

        if replaced:
            self._release(_external_ids(replaced), reason="replaced by update")

        logger.info(
            "Updated %s %s (assets replaced: %s)",
            self.spec.label.lower(),
            record_id,
            bool(uploaded),
        )
        return self.public_view(updated)

    def delete(self, record_id: str) -> dict:
        existing = self._require(record_id)
        external_ids = (
            _external_ids(existing.get(self.spec.asset_field) or [])
            if self.spec.asset_field
            else []
        )

        with concurrent.futures.ThreadPoolExecutor(max_workers=3) as executor:
            removal = executor.submit(self.store.delete_by_id, self.spec.name, record_id)
            release = (
                executor.submit(self.assets.delete_many, external_ids)
                if external_ids
                else None
            )
            cascade = executor.submit(self.cascade.cascade_delete, record_id)

        if release is not None:
            try:
                release.result()
            except Exception:
                logger.exception(
                    "Could not release assets %s of deleted %s %s",
                    external_ids,
                    self.spec.label.lower(),
                    record_id,
                )
        try:
            cascade.result()
        except Exception:
            logger.exception("Cascade after deleting %s %s failed", self.spec.label.lower(), record_id)

        if not removal.result():
            raise NotFoundError(self._not_found_message(record_id))

        logger.info("Deleted %s %s", self.spec.label.lower(), record_id)
        return self.public_view(existing)

    def public_view(self, doc: dict) -> dict:
        return {key: value for key, value in doc.items() if key not in self.spec.hidden_fields}

    # Helpers

    def _require(self, record_id: str) -> dict:
        if not is_valid_record_id(record_id):
            raise ValidationError(f"Invalid {self.spec.label.lower()} ID: {record_id}")
        existing = self.store.find_by_id(self.spec.name, record_id)
        if existing is None:
            raise NotFoundError(self._not_found_message(record_id))
        return existing

    def _not_found_message(self, record_id: str) -> str:
        return f"{self.spec.label} not found with ID: {record_id}"

    def _clean_fields(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        # System fields and asset references are owned by the lifecycle.
        return {
            key: value
            for key, value in fields.items()
            if key not in SYSTEM_FIELDS and key != self.spec.asset_field
        }

    def _check_attachments_allowed(self, attachments: Sequence[Attachment]) -> None:
        if attachments and not self.spec.asset_field:
            raise ValidationError(f"{self.spec.label} records do not accept attachments")

    def _distinguishing_name(self, fields: Mapping[str, Any]) -> Optional[str]:
        if not self.spec.unique_field:
            return None
        value = fields.get(self.spec.unique_field)
        return value if isinstance(value, str) else None

    def _upload_all(self, attachments: Sequence[Attachment]) -> List[dict]:
        # Completed sibling uploads are not rolled back when one fails.
        workers = min(len(attachments), self.max_workers)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self._upload_one, attachments))

    def _upload_one(self, attachment: Attachment) -> dict:
        suggested_id = f"{self.spec.name}/{uuid.uuid4().hex}"
        if self.asset_key_prefix:
            suggested_id = f"{self.asset_key_prefix}/{suggested_id}"
        stored = self.assets.upload(
            attachment.content, suggested_id, content_type=attachment.content_type
        )
        return AssetReference(
            external_id=stored.external_id,
            retrieval_url=stored.retrieval_url,
            original_name=attachment.filename,
        ).model_dump()

    def _release(self, external_ids: List[str], *, reason: str) -> None:
        if not external_ids:
            return
        try:
            self.assets.delete_many(external_ids)
        except Exception:
            logger.exception(
                "Could not release assets %s (%s); they are orphaned", external_ids, reason
            )


def _external_ids(references: Iterable[dict]) -> List[str]:
    return [reference["external_id"] for reference in references]
