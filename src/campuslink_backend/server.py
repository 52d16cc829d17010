import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campuslink_backend.api.internal import internal_router, metrics_router
from campuslink_backend.redis_cache import close_redis_client
from campuslink_backend.websocket.hub import RealtimeHub, create_hub
from campuslink_backend.websocket.router import ws_router

logger = logging.getLogger(__name__)

origins = [
    "http://localhost:3000",  # Web frontend
    "http://localhost:5173",  # Vite dev server
    "http://localhost:8000",  # Backend (for docs)
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    hub: RealtimeHub = app.state.hub
    await hub.start()
    try:
        yield
    finally:
        await hub.stop()
        await close_redis_client()


def create_app(hub: Optional[RealtimeHub] = None) -> FastAPI:
    """Build the realtime application around ``hub`` (built from settings when omitted)."""
    app = FastAPI(title="CampusLink Realtime", lifespan=lifespan)
    app.state.hub = hub or create_hub()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ws_router)
    app.include_router(internal_router)
    app.include_router(metrics_router)

    @app.head("/", status_code=204)
    def get_status_head():
        return

    return app


app = create_app()
