from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.db.session import get_db_session
from boxoffice.settings import Settings, settings

def get_settings() -> Settings:
    return settings

# Request-scoped dependencies
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]
