"""Tablefront API service entrypoint."""

import logging
import os

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.routers.checkout import router as checkout_router
from services.api.app.routers.events import router as events_router
from services.api.app.routers.gift_cards import router as gift_cards_router
from services.api.app.routers.orders import router as orders_router

logging.basicConfig(
    level=os.getenv("TABLEFRONT_LOG_LEVEL", "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Tablefront API")

app.include_router(checkout_router)
app.include_router(gift_cards_router)
app.include_router(orders_router)
app.include_router(events_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
