from contextlib import asynccontextmanager

from fastapi import FastAPI
from tortoise.contrib.fastapi import RegisterTortoise

from playlink import settings
from playlink.logging_config import setup_logging
from playlink.routers import booking, venue, wallet

TORTOISE_ORM = {
    "connections": {"default": settings.db_url},
    "apps": {"models": {"models": ["playlink.models"], "default_connection": "default"}},
    "use_tz": True,
    "timezone": "UTC",
}

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        config=TORTOISE_ORM,
        generate_schemas=settings.GENERATE_SCHEMAS,
        add_exception_handlers=True,
    ):
        yield


app = FastAPI(title="playlink-bookings", lifespan=lifespan)
app.include_router(booking.router)
app.include_router(venue.router)
app.include_router(wallet.router)
