"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from recordkeeper.accounts import AccountService
from recordkeeper.config import get_settings
from recordkeeper.db import InMemoryRecordStore, RecordStore, SqlRecordStore
from recordkeeper.documents import PRODUCTS, TRANSACTIONS, USERS, CollectionSpec
from recordkeeper.lifecycle import RecordLifecycleManager
from recordkeeper.sessions import (
    InMemoryRevocationSet,
    RedisRevocationSet,
    RevocationStore,
    SessionTokenService,
)
from recordkeeper.storage import AssetStore, InMemoryAssetStore, S3AssetStore

logger = logging.getLogger(__name__)

_record_store: RecordStore | None = None
_asset_store: AssetStore | None = None
_revocations: RevocationStore | None = None
_token_service: SessionTokenService | None = None


def get_record_store() -> RecordStore:
    """
    Return a singleton record store so documents persist across requests.
    """
    global _record_store
    if _record_store:
        return _record_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _record_store = InMemoryRecordStore()
    else:
        _record_store = SqlRecordStore(settings.database_url)
    return _record_store


def get_asset_store() -> AssetStore:
    global _asset_store
    if _asset_store:
        return _asset_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _asset_store = InMemoryAssetStore()
    else:
        _asset_store = S3AssetStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.asset_public_base_url,
            url_expires_in=settings.token_ttl_days * 24 * 3600,
        )
    return _asset_store


def get_revocation_store() -> RevocationStore:
    global _revocations
    if _revocations is not None:
        return _revocations

    settings = get_settings()
    if settings.durable_revocations:
        if not settings.redis_url:
            raise RuntimeError("DURABLE_REVOCATIONS requires REDIS_URL")
        logger.info("Session revocations are persisted in Redis")
        _revocations = RedisRevocationSet(
            settings.redis_url, key_prefix=settings.revocation_key_prefix
        )
    else:
        _revocations = InMemoryRevocationSet()
    return _revocations


def get_token_service() -> SessionTokenService:
    global _token_service
    if _token_service:
        return _token_service

    settings = get_settings()
    secret = settings.token_secret
    if not secret:
        logger.warning(
            "TOKEN_SECRET is not set; using a random secret, sessions end on restart"
        )
        secret = secrets.token_urlsafe(64)
    _token_service = SessionTokenService(
        secret,
        get_revocation_store(),
        ttl=timedelta(days=settings.token_ttl_days),
    )
    return _token_service


def _manager_for(spec: CollectionSpec) -> RecordLifecycleManager:
    settings = get_settings()
    return RecordLifecycleManager(
        spec,
        get_record_store(),
        get_asset_store(),
        max_workers=settings.fanout_workers,
        asset_key_prefix=settings.asset_key_prefix,
    )


def get_user_manager() -> RecordLifecycleManager:
    return _manager_for(USERS)


def get_product_manager() -> RecordLifecycleManager:
    return _manager_for(PRODUCTS)


def get_transaction_manager() -> RecordLifecycleManager:
    return _manager_for(TRANSACTIONS)


def get_account_service() -> AccountService:
    return AccountService(
        get_user_manager(),
        get_token_service(),
        bcrypt_rounds=get_settings().bcrypt_rounds,
    )
