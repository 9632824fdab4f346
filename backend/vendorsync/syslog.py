"""Helpers for writing rows to the system_logs table."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vendorsync.database import AsyncSessionLocal
from vendorsync.models import LogLevel, SystemLog


async def write_log(
    level: LogLevel,
    source: str,
    message: str,
    details: Optional[dict] = None,
    vendor_id: Optional[str] = None,
    session: Optional[AsyncSession] = None,
):
    """Persist one structured log entry, in ``session`` or a fresh one."""
    entry = SystemLog(
        level=level, source=source, message=message,
        details=details or {}, vendor_id=vendor_id,
    )
    if session is not None:
        session.add(entry)
        await session.commit()
        return
    async with AsyncSessionLocal() as own_session:
        own_session.add(entry)
        await own_session.commit()
