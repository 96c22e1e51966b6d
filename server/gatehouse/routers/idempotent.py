"""Idempotent execution of create operations."""

from typing import Any, Awaitable, Callable, Optional

from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..core.security import AuthContext
from ..services.idempotency_service import IdempotencyService


async def run_idempotent(
    db: AsyncSession,
    ctx: AuthContext,
    method: str,
    idempotency_key: Optional[str],
    request_body: dict[str, Any],
    operation: Callable[[], Awaitable[dict[str, Any]]],
    status_code: int = 201,
) -> JSONResponse:
    """
    Run ``operation`` once per (caller, method, key) and replay its response.

    Without a key the operation simply runs. Problem responses are stored as
    well, so a retried request gets the same answer as the first one.
    """
    if idempotency_key is None:
        return JSONResponse(status_code=status_code, content=await operation())

    idempotency_service = IdempotencyService(db)

    cached = await idempotency_service.check_idempotency(ctx, idempotency_key, method, request_body)
    if cached is not None:
        cached_status, cached_body = cached
        return JSONResponse(status_code=cached_status, content=cached_body)

    try:
        response_body = await operation()
    except ProblemDetailsException as e:
        await idempotency_service.store_response(
            ctx, idempotency_key, method, request_body, e.status_code, e.problem_details
        )
        raise

    await idempotency_service.store_response(
        ctx, idempotency_key, method, request_body, status_code, response_body
    )
    return JSONResponse(status_code=status_code, content=response_body)
