from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, Request, Response

from tgvault.app.services.bundle import ServiceBundle
from tgvault.app.services.object_service import ObjectService
from tgvault.domain.errors import RateLimitedError

logger = logging.getLogger("http")


def get_bundle(request: Request) -> ServiceBundle:
    return request.app.state.bundle


def get_object_service(bundle: ServiceBundle = Depends(get_bundle)) -> ObjectService:
    return bundle.objects()


def get_client_key(request: Request, bundle: ServiceBundle = Depends(get_bundle)) -> str:
    if bundle.settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(
    response: Response,
    client_key: str = Depends(get_client_key),
    bundle: ServiceBundle = Depends(get_bundle),
) -> None:
    limiter = bundle.rate_limiter()
    try:
        decision = limiter.enforce(client_key)
    except RateLimitedError as exc:
        raise HTTPException(
            status_code=429,
            detail={"message": "Rate limit exceeded", "error_code": "rate_limited"},
            headers={"Retry-After": str(exc.retry_after)},
        ) from exc
    response.headers["X-RateLimit-Limit"] = str(limiter.config.capacity)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining_tokens)


def require_admin_key(
    x_admin_key: str | None = Header(default=None),
    bundle: ServiceBundle = Depends(get_bundle),
) -> None:
    admin_key = bundle.settings.ADMIN_SECRET
    if not admin_key:
        raise HTTPException(status_code=503, detail="Admin operations are disabled")
    if x_admin_key != admin_key:
        preview = "<missing>"
        if x_admin_key:
            preview = f"{x_admin_key[:4]}***"
        logger.warning(
            "admin_key_mismatch admin_key_preview=%s",
            preview,
        )
        raise HTTPException(status_code=403, detail="Forbidden")
