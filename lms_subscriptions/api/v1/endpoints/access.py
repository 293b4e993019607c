"""Content access checks consumed by the course and pathway modules."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from lms_subscriptions.api.deps import get_entitlement_service
from lms_subscriptions.auth.jwt import require_auth
from lms_subscriptions.services.entitlement_service import ContentKind, EntitlementService


router = APIRouter(prefix="/access", tags=["access"])


class AccessResponse(BaseModel):
    has_access: bool


@router.get("/{kind}/{content_id}", response_model=AccessResponse)
async def check_access(
    kind: ContentKind,
    content_id: UUID,
    auth=Depends(require_auth),
    service: EntitlementService = Depends(get_entitlement_service),
):
    allowed = await service.has_access(auth["user_id"], content_id, kind)
    return AccessResponse(has_access=allowed)
