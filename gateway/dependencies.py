"""FastAPI dependencies shared by the routers."""
from __future__ import annotations

import uuid

from fastapi import Header, Request

from gateway.bootstrap import Gateway
from gateway.shared.errors import ValidationError


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_current_user_id(user_id: str = Header(..., alias="X-User-Id")) -> uuid.UUID:
    """Caller identity as forwarded by the authenticating proxy."""
    try:
        return uuid.UUID(user_id)
    except ValueError as exc:
        raise ValidationError("X-User-Id must be a UUID") from exc
