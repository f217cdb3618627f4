"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chirisu.api import ops
from chirisu.api.errors import install_error_handlers
from chirisu.api.middleware_request_id import RequestIdMiddleware
from chirisu.infra import postgres
from chirisu.moderation import configure_postgres as configure_moderation
from chirisu.moderation import router as moderation_router
from chirisu.obs import init as obs_init
from chirisu.settings import settings

_DEV_ORIGINS = [
	"http://localhost:3000",
	"http://127.0.0.1:3000",
	"http://localhost:9002",
	"http://127.0.0.1:9002",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	configure_moderation(pool)
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="Chirisu Moderation Queue", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins or "*" in allow_origins:
	# Starlette disallows wildcard '*' with allow_credentials=True.
	allow_origins = _DEV_ORIGINS if settings.is_dev() else ["https://chirisu.app"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs_init(app)

# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)

app.include_router(ops.router, tags=["ops"])
app.include_router(moderation_router, tags=["moderation"])
