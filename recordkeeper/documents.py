"""
Document models and the collection registry.

Every collection the backend manages is described by a ``CollectionSpec``:
the pydantic model its documents validate against, the field that must be
unique under case-insensitive comparison, the field holding asset references,
fields never returned to callers, and the collections whose documents point
back at it through a foreign key.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, get_origin

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from recordkeeper.errors import ValidationError

RECORD_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Managed by the store, never validated against the collection model.
SYSTEM_FIELDS = ("id", "created_at", "updated_at")


def fold_name(value: str) -> str:
    """Unicode-aware case fold used for every uniqueness comparison."""
    return unicodedata.normalize("NFKC", unicodedata.normalize("NFKC", value).casefold())


def is_valid_record_id(record_id: str) -> bool:
    return bool(record_id) and bool(RECORD_ID_PATTERN.match(record_id))


class Role(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssetReference(BaseModel):
    external_id: str
    retrieval_url: str
    original_name: str


class _Document(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UserDocument(_Document):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1)
    roles: list[Role] = Field(default_factory=lambda: [Role.CUSTOMER], min_length=1)
    image: list[AssetReference] = Field(..., min_length=1)


class ProductDocument(_Document):
    product_name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    description: str = ""
    category: Optional[str] = None
    user: str
    image: list[AssetReference] = Field(..., min_length=1)


class TransactionDocument(_Document):
    user: str
    product: list[str] = Field(..., min_length=1)
    status: TransactionStatus = TransactionStatus.PENDING
    date: datetime


@dataclass(frozen=True)
class Dependent:
    """A collection whose ``foreign_key`` holds the id of an owning record."""

    collection: str
    foreign_key: str


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    label: str
    model: Type[BaseModel]
    unique_field: Optional[str] = None
    asset_field: Optional[str] = None
    hidden_fields: Tuple[str, ...] = ()
    dependents: Tuple[Dependent, ...] = field(default_factory=tuple)


USERS = CollectionSpec(
    name="users",
    label="User",
    model=UserDocument,
    unique_field="name",
    asset_field="image",
    hidden_fields=("password",),
    dependents=(
        Dependent(collection="products", foreign_key="user"),
        Dependent(collection="transactions", foreign_key="user"),
    ),
)

PRODUCTS = CollectionSpec(
    name="products",
    label="Product",
    model=ProductDocument,
    unique_field="product_name",
    asset_field="image",
    dependents=(Dependent(collection="transactions", foreign_key="product"),),
)

TRANSACTIONS = CollectionSpec(
    name="transactions",
    label="Transaction",
    model=TransactionDocument,
)

COLLECTIONS: Dict[str, CollectionSpec] = {
    spec.name: spec for spec in (USERS, PRODUCTS, TRANSACTIONS)
}


def validate_document(spec: CollectionSpec, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate ``data`` against the collection model and return the normalized
    JSON-compatible body. System fields pass through untouched.
    """
    body = {key: value for key, value in data.items() if key not in SYSTEM_FIELDS}
    try:
        normalized = spec.model.model_validate(body).model_dump(mode="json")
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or spec.name}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid {spec.label.lower()}: {problems}") from exc
    for key in SYSTEM_FIELDS:
        if key in data:
            normalized[key] = data[key]
    return normalized


def is_list_field(spec: CollectionSpec, field_name: str) -> bool:
    """True when the model declares ``field_name`` as a list, e.g. many-valued foreign keys."""
    model_field = spec.model.model_fields.get(field_name)
    return model_field is not None and get_origin(model_field.annotation) is list


def field_matches(value: Any, expected: Any) -> bool:
    """Equality for scalar fields, membership for list fields."""
    if isinstance(value, list):
        return expected in value
    return value == expected


def unique_key_for(spec: CollectionSpec, data: Dict[str, Any]) -> Optional[str]:
    if not spec.unique_field:
        return None
    value = data.get(spec.unique_field)
    if not isinstance(value, str):
        return None
    return fold_name(value)
