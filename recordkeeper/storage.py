"""
Asset storage abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from recordkeeper.errors import InfrastructureError

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most this many keys per request.
_DELETE_BATCH_SIZE = 1000


@dataclass(frozen=True)
class StoredAsset:
    external_id: str
    retrieval_url: str


class AssetStore(Protocol):
    """Defines the operations the lifecycle needs from object storage."""

    def upload(
        self, payload: bytes, suggested_id: str, content_type: Optional[str] = None
    ) -> StoredAsset:
        ...

    def delete_many(self, external_ids: Iterable[str]) -> None:
        ...

    def exists(self, external_id: str) -> bool:
        ...


@dataclass
class InMemoryAssetStore:
    """Test double for asset storage."""

    base_url: str = "https://example.test/assets"
    stored_objects: Dict[str, bytes] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def upload(
        self, payload: bytes, suggested_id: str, content_type: Optional[str] = None
    ) -> StoredAsset:
        with self._lock:
            self.stored_objects[suggested_id] = bytes(payload)
        return StoredAsset(
            external_id=suggested_id, retrieval_url=f"{self.base_url}/{suggested_id}"
        )

    def delete_many(self, external_ids: Iterable[str]) -> None:
        with self._lock:
            for external_id in external_ids:
                self.stored_objects.pop(external_id, None)

    def exists(self, external_id: str) -> bool:
        with self._lock:
            return external_id in self.stored_objects

    def reset(self) -> None:
        """Clear all stored objects (useful in tests)."""
        with self._lock:
            self.stored_objects.clear()


@dataclass
class S3AssetStore:
    """
    Asset store backed by an S3-compatible bucket.

    Retrieval URLs point at ``public_base_url`` when one is configured,
    otherwise they are presigned GET URLs valid for ``url_expires_in`` seconds.
    """

    bucket: str
    region: str = ""
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    public_base_url: Optional[str] = None
    url_expires_in: int = 7 * 24 * 3600

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _retrieval_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.url_expires_in,
        )

    def upload(
        self, payload: bytes, suggested_id: str, content_type: Optional[str] = None
    ) -> StoredAsset:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=suggested_id,
                Body=payload,
                ContentType=content_type or "application/octet-stream",
            )
            url = self._retrieval_url(suggested_id)
        except (BotoCoreError, ClientError) as exc:
            raise InfrastructureError(
                f"Asset upload failed for {suggested_id}: {exc}"
            ) from exc
        return StoredAsset(external_id=suggested_id, retrieval_url=url)

    def delete_many(self, external_ids: Iterable[str]) -> None:
        keys = list(external_ids)
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[start : start + _DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as exc:
                raise InfrastructureError(f"Asset deletion failed: {exc}") from exc
            # Per-key failures do not fail the call.
            for error in response.get("Errors", []):
                logger.warning(
                    "Could not delete asset %s: %s", error.get("Key"), error.get("Message")
                )

    def exists(self, external_id: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=external_id)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise InfrastructureError(f"Asset lookup failed: {exc}") from exc
        except BotoCoreError as exc:
            raise InfrastructureError(f"Asset lookup failed: {exc}") from exc
        return True
