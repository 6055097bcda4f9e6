# subscription_activation/core/create_db.py

import asyncio

from subscription_activation.core.config import get_settings
from subscription_activation.models.activation_code import Base
from subscription_activation.services.database import create_engine

async def init_db(database_url: str):
    engine = create_engine(database_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_db(get_settings().database_url))
