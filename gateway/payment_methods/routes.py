"""Payment-method routes; the caller is identified by the X-User-Id header."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from gateway.bootstrap import Gateway
from gateway.dependencies import get_current_user_id, get_gateway
from gateway.shared.schemas import (
    Paginated,
    PaymentMethodCreate,
    PaymentMethodDeleted,
    PaymentMethodQuery,
    PaymentMethodResponse,
    PaymentMethodSummary,
    PaymentMethodUpdate,
)

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])


@router.post(
    "",
    response_model=PaymentMethodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store a payment method for the caller",
)
async def create_payment_method(
    body: PaymentMethodCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> PaymentMethodResponse:
    payment_method = await gateway.payment_methods.create(body, user_id)
    return PaymentMethodResponse.model_validate(payment_method)


@router.get("", response_model=Paginated[PaymentMethodResponse], summary="List all payment methods")
async def list_payment_methods(
    query: PaymentMethodQuery = Depends(),
    gateway: Gateway = Depends(get_gateway),
) -> Paginated[PaymentMethodResponse]:
    return await gateway.payment_methods.find_all(query)


@router.get("/me", response_model=Paginated[PaymentMethodResponse])
async def list_my_payment_methods(
    query: PaymentMethodQuery = Depends(),
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> Paginated[PaymentMethodResponse]:
    return await gateway.payment_methods.find_by_user(user_id, query)


@router.get("/{payment_method_id}", response_model=PaymentMethodResponse)
async def get_payment_method(
    payment_method_id: uuid.UUID,
    gateway: Gateway = Depends(get_gateway),
) -> PaymentMethodResponse:
    payment_method = await gateway.payment_methods.find_one(payment_method_id)
    return PaymentMethodResponse.model_validate(payment_method)


@router.patch("/{payment_method_id}", response_model=PaymentMethodResponse)
async def update_payment_method(
    payment_method_id: uuid.UUID,
    body: PaymentMethodUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> PaymentMethodResponse:
    payment_method = await gateway.payment_methods.update_for_user(payment_method_id, body, user_id)
    return PaymentMethodResponse.model_validate(payment_method)


@router.delete("/{payment_method_id}", response_model=PaymentMethodDeleted)
async def delete_payment_method(
    payment_method_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    gateway: Gateway = Depends(get_gateway),
) -> PaymentMethodDeleted:
    payment_method = await gateway.payment_methods.remove_for_user(payment_method_id, user_id)
    return PaymentMethodDeleted(
        message="Payment method has been deleted successfully",
        payment_method=PaymentMethodSummary.model_validate(payment_method),
    )
