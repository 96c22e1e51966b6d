"""Local-time lookups for a society."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..models.society import Society


async def tenant_timezone(db: AsyncSession, tenant_id: UUID) -> str:
    """IANA zone of the society, falling back to SOCIETY_TIMEZONE."""
    tz = await db.scalar(select(Society.timezone).where(Society.id == tenant_id))
    return tz or settings.society_timezone
