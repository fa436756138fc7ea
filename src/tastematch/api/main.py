from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

load_dotenv()  # Load environment variables from .env if present (GEMINI_API_KEY, OPENAI_API_KEY, etc.)

from ..observability.metrics import metrics_middleware_factory  # noqa: E402
from ..services.orchestrator import get_orchestrator  # noqa: E402
from .routers.auth import router as auth_router  # noqa: E402
from .routers.rooms import router as rooms_router  # noqa: E402
from .routers.ws import router as ws_router  # noqa: E402

logger = logging.getLogger("tastematch.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator = get_orchestrator()
    if (os.getenv("TASTEMATCH_REGISTER_OAUTH_CLIENT") or "1").strip() == "1":
        register = getattr(orchestrator.provider, "register_client", None)
        if register is not None:
            try:
                await register()
            except Exception as exc:
                # Non-fatal: the first authorization attempt registers lazily.
                logger.warning("oauth_registration_skipped err=%s", exc)
    yield
    await orchestrator.drain()


app = FastAPI(title="TasteMatch API", version="0.1.0", lifespan=lifespan)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(rooms_router)
app.include_router(auth_router)
app.include_router(ws_router)

_origins = [o.strip() for o in (os.getenv("TASTEMATCH_CORS_ORIGINS") or "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "TasteMatch API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "rooms": "in-memory",
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
