from __future__ import annotations

from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from collab.api.routers import meetings, presence
from collab.core.config import settings
from collab.core.logging_config import setup_logging
from collab.db.session import init_db
from collab.realtime.server import sio

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(meetings.router)
app.include_router(presence.router)

# Socket.IO answers its own path (polling and websocket upgrades) and hands
# everything else to FastAPI.
application = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path=settings.socketio_path)
