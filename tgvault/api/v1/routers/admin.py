from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from tgvault.api.v1.deps import get_object_service, require_admin_key
from tgvault.api.v1.schemas.objects import DeleteOut
from tgvault.api.v1.utils import to_http_exception
from tgvault.app.services.object_service import ObjectService
from tgvault.domain.errors import VaultError

router = APIRouter(dependencies=[Depends(require_admin_key)])
logger = logging.getLogger("tgvault.admin")


@router.delete("/admin/objects/{public_id}", response_model=DeleteOut)
def delete_object(
    public_id: str,
    service: ObjectService = Depends(get_object_service),
) -> DeleteOut:
    """Remove every remote chunk of an object. The ID stops resolving afterwards."""
    try:
        chunks = service.delete_object(public_id)
    except VaultError as exc:
        raise to_http_exception(exc) from exc
    logger.info("object_deleted chunks=%s", chunks, extra={"extra": {"chunks": chunks}})
    return DeleteOut(id=public_id, deleted=True, chunks=chunks)
