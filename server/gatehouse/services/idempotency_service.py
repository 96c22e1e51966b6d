"""Stored responses for create requests retried with the same Idempotency-Key."""

import hashlib
import json
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import clock
from ..core.config import settings
from ..core.exceptions import ConflictError
from ..core.observability import get_logger
from ..core.security import AuthContext
from ..models.idempotency import IdempotencyRecord

logger = get_logger(__name__)


class IdempotencyMismatchError(ConflictError):
    """Idempotency key reused with a different request body."""

    code = "IDEMPOTENCY_KEY_MISMATCH"

    def __init__(self, idempotency_key: str, method: str):
        super().__init__(
            detail=(
                f"Idempotency key '{idempotency_key}' was already used for '{method}' "
                "with a different request body"
            ),
        )
        self.problem_details.update({"idempotency_key": idempotency_key, "method": method})


def caller_scope(ctx: AuthContext) -> str:
    return f"{ctx.tenant_id}:{ctx.subject_id}"


class IdempotencyService:
    """Replays the first response stored under (caller, method, key)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _compute_request_hash(request_body: dict[str, Any]) -> str:
        """SHA-256 of the request body with keys sorted."""
        normalized = json.dumps(request_body, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    async def check_idempotency(
        self,
        ctx: AuthContext,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
    ) -> Optional[tuple[int, dict[str, Any]]]:
        """
        Look up a stored response for this caller and key.

        Returns:
            ``(status_code, response_body)`` if the request was already served,
            None if it is new

        Raises:
            IdempotencyMismatchError: If the key was used with a different body
        """
        request_hash = self._compute_request_hash(request_body)

        stmt = select(IdempotencyRecord).where(
            IdempotencyRecord.scope == caller_scope(ctx),
            IdempotencyRecord.idempotency_key == idempotency_key,
            IdempotencyRecord.method == method,
            IdempotencyRecord.expires_at > clock.utcnow(),
        )
        record = (await self.db.execute(stmt)).scalar_one_or_none()

        if record is None:
            return None

        if record.request_body_hash != request_hash:
            logger.warning(
                "Idempotency key mismatch",
                idempotency_key=idempotency_key,
                method=method,
                **ctx.log_fields(),
            )
            raise IdempotencyMismatchError(idempotency_key, method)

        logger.info(
            "Replaying stored response",
            idempotency_key=idempotency_key,
            method=method,
            status_code=record.response_status_code,
        )
        return record.response_status_code, json.loads(record.response_body)

    async def store_response(
        self,
        ctx: AuthContext,
        idempotency_key: str,
        method: str,
        request_body: dict[str, Any],
        status_code: int,
        response_body: dict[str, Any],
    ) -> None:
        """Store a response; a concurrent writer that got there first wins."""
        record = IdempotencyRecord(
            scope=caller_scope(ctx),
            idempotency_key=idempotency_key,
            method=method,
            request_body_hash=self._compute_request_hash(request_body),
            response_status_code=status_code,
            response_body=json.dumps(response_body, sort_keys=True, separators=(",", ":")),
            expires_at=clock.utcnow() + timedelta(hours=settings.idempotency_ttl_hours),
        )

        try:
            self.db.add(record)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Idempotency record already stored by a concurrent request",
                idempotency_key=idempotency_key,
                method=method,
            )

    async def cleanup_expired_records(self) -> int:
        """Delete expired records; returns the number removed."""
        result = await self.db.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= clock.utcnow())
        )
        await self.db.commit()

        if result.rowcount:
            logger.info("Cleaned up expired idempotency records", deleted_count=result.rowcount)
        return result.rowcount
