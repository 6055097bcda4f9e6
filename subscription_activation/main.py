# subscription_activation/main.py
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request

from subscription_activation.core.config import Settings, get_settings
from subscription_activation.core.logging_setup import configure_logging
from subscription_activation.dependencies import get_app_settings, get_record_store
from subscription_activation.routers import activation, activations, webhooks
from subscription_activation.services.record_store import RecordStore, build_record_store
from subscription_activation.services.subscription_control import build_subscription_control

# Load environment variables
load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    app.state.record_store = build_record_store(settings)
    app.state.subscription_control = build_subscription_control(settings)
    try:
        yield
    finally:
        await app.state.subscription_control.close()
        await app.state.record_store.close()


app = FastAPI(title="Subscription Activation", lifespan=lifespan)

# Issuance webhooks, customer redemption and the operator listing
app.include_router(webhooks.router)
app.include_router(activation.router)
app.include_router(activations.router)

@app.get("/")
async def root():
    return {"ok": True, "msg": "API root alive"}

@app.get("/api/echo")
async def echo(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: RecordStore = Depends(get_record_store),
):
    return {
        "ok": True,
        "method": request.method,
        "query": dict(request.query_params),
        "haveSeal": bool(settings.seal_api_key),
        "storage": store.backend,
    }
