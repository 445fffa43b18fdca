"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ init_db()   │
    │ manager.    │
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ manager.    │
    │ cleanup()   │
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8000

**Shorten a URL**::
    curl -X POST http://localhost:8000/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Database tables are created on startup.
- Redis clients and the shortener service are created once on startup and
  closed on shutdown, after in-flight background tasks finish.
- ShortenerError subclasses become JSON errors with their status code;
  backend failures answer 503 with a generic message.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.exceptions import ShortenerError
from shortener.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


async def shortener_error_handler(request: Request, exc: ShortenerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with counter-based short codes and cache-aside resolution",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ShortenerError, shortener_error_handler)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
