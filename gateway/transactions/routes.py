"""
Transaction routes.

POST /transactions returns as soon as the PENDING row is committed; the
payment link is created in the background and announced to the owner through
the notification relay.
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from gateway.bootstrap import Gateway
from gateway.dependencies import get_current_user_id, get_gateway
from gateway.shared.schemas import (
    DeleteResponse,
    Paginated,
    TransactionCreate,
    TransactionDetailResponse,
    TransactionQuery,
    TransactionResponse,
    TransactionStats,
    TransactionUpdate,
)

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a transaction for the caller",
)
async def create_transaction(
    body: TransactionCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> TransactionResponse:
    transaction = await gateway.transactions.create(body, user_id)
    return TransactionResponse.model_validate(transaction)


@router.get("", response_model=Paginated[TransactionResponse])
async def list_transactions(
    query: TransactionQuery = Depends(),
    gateway: Gateway = Depends(get_gateway),
) -> Paginated[TransactionResponse]:
    return await gateway.transactions.find_all(query)


@router.get("/stats", response_model=TransactionStats)
async def transaction_stats(
    user_id: uuid.UUID | None = Query(default=None),
    gateway: Gateway = Depends(get_gateway),
) -> TransactionStats:
    return await gateway.transactions.get_transaction_stats(user_id)


@router.get("/user/{user_id}", response_model=Paginated[TransactionResponse])
async def list_user_transactions(
    user_id: uuid.UUID,
    query: TransactionQuery = Depends(),
    gateway: Gateway = Depends(get_gateway),
) -> Paginated[TransactionResponse]:
    return await gateway.transactions.find_by_user(user_id, query)


@router.get("/{transaction_id}", response_model=TransactionDetailResponse)
async def get_transaction(
    transaction_id: uuid.UUID,
    gateway: Gateway = Depends(get_gateway),
) -> TransactionDetailResponse:
    return await gateway.transactions.find_one(transaction_id)


@router.patch("/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: uuid.UUID,
    body: TransactionUpdate,
    gateway: Gateway = Depends(get_gateway),
) -> TransactionResponse:
    transaction = await gateway.transactions.update(transaction_id, body)
    return TransactionResponse.model_validate(transaction)


@router.delete("/{transaction_id}", response_model=DeleteResponse)
async def delete_transaction(
    transaction_id: uuid.UUID,
    gateway: Gateway = Depends(get_gateway),
) -> DeleteResponse:
    deleted = await gateway.transactions.remove(transaction_id)
    return DeleteResponse(message="Transaction deleted successfully", id=deleted)
