"""
HTTP routes for the record backend.

Routes only translate between HTTP and the lifecycle managers; every rule
about uniqueness, assets and cascades lives in the core.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool

from recordkeeper.accounts import AccountService
from recordkeeper.config import get_settings
from recordkeeper.dependencies import (
    get_account_service,
    get_product_manager,
    get_token_service,
    get_transaction_manager,
    get_user_manager,
)
from recordkeeper.lifecycle import Attachment, RecordLifecycleManager
from recordkeeper.schemas import (
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    PasswordUpdateRequest,
    RecordListResponse,
    RecordResponse,
    TransactionCreateRequest,
    TransactionUpdateRequest,
)
from recordkeeper.sessions import SessionClaims, SessionTokenService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_attachments(files: Optional[List[UploadFile]]) -> list[Attachment]:
    attachments = []
    for upload in files or []:
        if not upload.filename:
            continue
        attachments.append(
            Attachment(
                filename=upload.filename,
                content=await upload.read(),
                content_type=upload.content_type,
            )
        )
    return attachments


def _present(**fields) -> dict:
    return {key: value for key, value in fields.items() if value is not None}


def get_session_token(request: Request) -> Optional[str]:
    """Read the session token from the session cookie or a bearer header."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(get_settings().session_cookie_name)


def require_session(
    token: Optional[str] = Depends(get_session_token),
    tokens: SessionTokenService = Depends(get_token_service),
) -> SessionClaims:
    return tokens.verify(token or "")


# Users


@router.get("/users", response_model=RecordListResponse)
def list_users(users: RecordLifecycleManager = Depends(get_user_manager)):
    records = users.list()
    return RecordListResponse(message=f"{len(records)} users retrieved", data=records)


@router.get("/users/{user_id}", response_model=RecordResponse)
def get_user(user_id: str, users: RecordLifecycleManager = Depends(get_user_manager)):
    user = users.get(user_id)
    return RecordResponse(message=f"User {user['name']} with ID {user['id']} retrieved", data=user)


@router.post("/users", response_model=RecordResponse, status_code=201)
async def create_user(
    name: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    roles: Optional[str] = Form(None),
    image: Optional[List[UploadFile]] = File(None),
    accounts: AccountService = Depends(get_account_service),
):
    attachments = await _read_attachments(image)
    fields = _present(name=name, email=email, password=password, roles=roles)
    user = await run_in_threadpool(accounts.register, fields, attachments)
    return RecordResponse(
        message=f"Created new user {user['name']} with an ID {user['id']}", data=user
    )


@router.patch("/users/{user_id}", response_model=RecordResponse)
async def update_user(
    user_id: str,
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    roles: Optional[str] = Form(None),
    image: Optional[List[UploadFile]] = File(None),
    accounts: AccountService = Depends(get_account_service),
):
    attachments = await _read_attachments(image)
    fields = _present(name=name, email=email, password=password, roles=roles)
    user = await run_in_threadpool(accounts.update_profile, user_id, fields, attachments)
    return RecordResponse(message=f"User {user['name']} with ID {user['id']} is updated", data=user)


@router.delete("/users/{user_id}", response_model=RecordResponse)
def delete_user(user_id: str, users: RecordLifecycleManager = Depends(get_user_manager)):
    user = users.delete(user_id)
    return RecordResponse(message=f"User {user['name']} with ID {user['id']} is deleted", data=user)


@router.put("/users/{user_id}/password", response_model=RecordResponse)
def update_password(
    user_id: str,
    payload: PasswordUpdateRequest,
    session: SessionClaims = Depends(require_session),
    accounts: AccountService = Depends(get_account_service),
):
    user = accounts.update_password(
        user_id,
        payload.old_password,
        payload.new_password,
        payload.confirm_password,
        identity=session.identity,
    )
    return RecordResponse(message=f"Password updated for user {user['id']}", data=user)


# Sessions


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
):
    settings = get_settings()
    user, issued = accounts.login(payload.email, payload.password)
    response.set_cookie(
        settings.session_cookie_name,
        issued.token,
        max_age=issued.max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="none" if settings.session_cookie_secure else "lax",
    )
    return LoginResponse(
        message=f"Welcome {user['name']}",
        data=user,
        access_token=issued.token,
        expires_at=issued.expires_at,
        max_age=issued.max_age,
    )


@router.post("/logout", response_model=LogoutResponse)
def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    accounts: AccountService = Depends(get_account_service),
):
    settings = get_settings()
    accounts.logout(token)
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
    )
    return LogoutResponse(message="Logged out")


# Products


@router.get("/products", response_model=RecordListResponse)
def list_products(products: RecordLifecycleManager = Depends(get_product_manager)):
    records = products.list()
    return RecordListResponse(message=f"{len(records)} products retrieved", data=records)


@router.get("/products/{product_id}", response_model=RecordResponse)
def get_product(
    product_id: str, products: RecordLifecycleManager = Depends(get_product_manager)
):
    product = products.get(product_id)
    return RecordResponse(
        message=f"Product {product['product_name']} with ID {product['id']} retrieved",
        data=product,
    )


@router.post("/products", response_model=RecordResponse, status_code=201)
async def create_product(
    product_name: str = Form(...),
    price: float = Form(...),
    user: str = Form(...),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    image: Optional[List[UploadFile]] = File(None),
    products: RecordLifecycleManager = Depends(get_product_manager),
):
    attachments = await _read_attachments(image)
    fields = _present(
        product_name=product_name,
        price=price,
        user=user,
        description=description,
        category=category,
    )
    product = await run_in_threadpool(products.create, fields, attachments)
    return RecordResponse(
        message=f"Created new product {product['product_name']} with an ID {product['id']}",
        data=product,
    )


@router.patch("/products/{product_id}", response_model=RecordResponse)
async def update_product(
    product_id: str,
    product_name: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    user: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    image: Optional[List[UploadFile]] = File(None),
    products: RecordLifecycleManager = Depends(get_product_manager),
):
    attachments = await _read_attachments(image)
    fields = _present(
        product_name=product_name,
        price=price,
        user=user,
        description=description,
        category=category,
    )
    product = await run_in_threadpool(products.update, product_id, fields, attachments)
    return RecordResponse(
        message=f"Product {product['product_name']} with ID {product['id']} is updated",
        data=product,
    )


@router.delete("/products/{product_id}", response_model=RecordResponse)
def delete_product(
    product_id: str, products: RecordLifecycleManager = Depends(get_product_manager)
):
    product = products.delete(product_id)
    return RecordResponse(
        message=f"Product {product['product_name']} with ID {product['id']} is deleted",
        data=product,
    )


# Transactions


@router.get("/transactions", response_model=RecordListResponse)
def list_transactions(
    transactions: RecordLifecycleManager = Depends(get_transaction_manager),
):
    records = transactions.list()
    return RecordListResponse(message=f"{len(records)} transactions retrieved", data=records)


@router.get("/transactions/{transaction_id}", response_model=RecordResponse)
def get_transaction(
    transaction_id: str,
    transactions: RecordLifecycleManager = Depends(get_transaction_manager),
):
    transaction = transactions.get(transaction_id)
    return RecordResponse(message=f"Transaction {transaction['id']} retrieved", data=transaction)


@router.post("/transactions", response_model=RecordResponse, status_code=201)
def create_transaction(
    payload: TransactionCreateRequest,
    transactions: RecordLifecycleManager = Depends(get_transaction_manager),
):
    transaction = transactions.create(payload.model_dump(mode="json", exclude_none=True))
    return RecordResponse(
        message=f"Created new transaction with an ID {transaction['id']}", data=transaction
    )


@router.patch("/transactions/{transaction_id}", response_model=RecordResponse)
def update_transaction(
    transaction_id: str,
    payload: TransactionUpdateRequest,
    transactions: RecordLifecycleManager = Depends(get_transaction_manager),
):
    transaction = transactions.update(
        transaction_id, payload.model_dump(mode="json", exclude_none=True)
    )
    return RecordResponse(message=f"Transaction {transaction['id']} is updated", data=transaction)


@router.delete("/transactions/{transaction_id}", response_model=RecordResponse)
def delete_transaction(
    transaction_id: str,
    transactions: RecordLifecycleManager = Depends(get_transaction_manager),
):
    transaction = transactions.delete(transaction_id)
    return RecordResponse(message=f"Transaction {transaction['id']} is deleted", data=transaction)
