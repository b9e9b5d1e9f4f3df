"""Application entrypoint: FastAPI app plus the Socket.IO server wrapped around it."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

from chatline.api import auth, friends, groups, messages, ops, profile, status
from chatline.api.errors import install_error_handlers
from chatline.api.middleware_request_id import RequestIdMiddleware
from chatline.domain.presence.sockets import PresenceNamespace, set_namespace
from chatline.infra import postgres
from chatline.maintenance.retention import run_status_purge_loop
from chatline.obs import init as obs_init
from chatline.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	purge_task: asyncio.Task | None = None
	if settings.status_purge_enabled:
		purge_task = asyncio.create_task(run_status_purge_loop(), name="status-purge")
	try:
		yield
	finally:
		if purge_task is not None:
			purge_task.cancel()
			await asyncio.gather(purge_task, return_exceptions=True)
		await postgres.close_pool()


app = FastAPI(title="Chatline API", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = ["http://localhost:3000", "http://localhost:5173"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins and not settings.is_dev():
	allow_origins = [origin for origin in allow_origins if origin != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Media written by the local store is served back from here.
upload_root = Path(settings.upload_dir).resolve()
upload_root.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=str(upload_root), check_dir=True), name="uploads")

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
presence_namespace = PresenceNamespace()
sio.register_namespace(presence_namespace)
set_namespace(presence_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

# Outermost: every request carries an X-Request-Id before observability runs.
app.add_middleware(RequestIdMiddleware)

app.include_router(auth.router)
app.include_router(friends.router)
app.include_router(groups.router)
app.include_router(messages.router)
app.include_router(profile.router)
app.include_router(status.router)
app.include_router(ops.router)
