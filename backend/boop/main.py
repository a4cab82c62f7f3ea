"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from boop.api import ops, proximity
from boop.api.errors import install_error_handlers
from boop.domain.proximity.container import build_container
from boop.domain.proximity.sockets import BoopNamespace, SocketIOTransport
from boop.infra.redis import redis_client
from boop.obs import init as obs_init
from boop.settings import settings

logger = logging.getLogger(__name__)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000", "http://localhost:8081"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8081"] if settings.is_dev() else []

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins or None)
container = build_container(SocketIOTransport(sio))
sio.register_namespace(BoopNamespace(container))


@asynccontextmanager
async def lifespan(app: FastAPI):
	app.state.container = container
	sweeper = asyncio.create_task(container.presence.run_sweeper(), name="presence-sweeper")
	logger.info("boop api started env=%s", settings.environment)
	try:
		yield
	finally:
		sweeper.cancel()
		await asyncio.gather(sweeper, return_exceptions=True)
		await container.shutdown()
		await redis_client.close()


app = FastAPI(title="Boop Proximity Core", lifespan=lifespan)
app.state.container = container
install_error_handlers(app)

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.include_router(proximity.router)
app.include_router(ops.router)

socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)
