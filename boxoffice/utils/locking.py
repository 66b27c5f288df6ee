from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Fixed key for the scheduler leader lock, shared by every instance.
LEADER_LOCK_KEY = 72616473

async def try_advisory_lock(session: AsyncSession, key: int = LEADER_LOCK_KEY) -> bool:
    """
    Attempts to acquire a Postgres session-level advisory lock.
    Returns True if acquired, False otherwise.

    Session-level locks are released automatically when the connection ends.
    Engines without advisory locks (SQLite in tests) run a single instance,
    which is always the leader.
    """
    if session.bind.dialect.name != "postgresql":
        return True

    result = await session.execute(
        text("SELECT pg_try_advisory_lock(:key)"),
        {"key": key}
    )
    return result.scalar() is True
