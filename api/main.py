"""
FeelingWise Bridge API — Main Application

Local HTTP bridge between a host (browser extension, desktop shell) and
the FeelingWise core.

POST   /neutralize        — Classify and neutralize one fragment
POST   /neutralize/batch  — Submit up to 100 fragments at once
GET    /techniques        — Technique taxonomy with vulnerability weights
GET    /patterns          — Local detector pattern families
GET    /cache/stats       — Result cache statistics
DELETE /cache             — Drop every cached result
GET    /settings          — Current host toggles
PUT    /settings          — Update host toggles
GET    /health            — Liveness check
GET    /status            — Scheduler, cache and provider status
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feelingwise import __version__
from feelingwise.config import settings
from feelingwise.detector import get_patterns as detector_patterns
from feelingwise.errors import InputRejected
from feelingwise.llm.factory import get_provider
from feelingwise.logging import setup_logging, get_logger
from feelingwise.scheduler import BatchScheduler, Fragment, create_scheduler
from feelingwise.scorer import SEVERITY_MAP, VULNERABILITY
from feelingwise.techniques import TECHNIQUE_DESCRIPTIONS, Technique
from feelingwise.schemas.neutralize import (
    NeutralizeRequest,
    NeutralizeBatchRequest,
    FragmentResponse,
    NeutralizeBatchResponse,
    TechniquesResponse,
    PatternsResponse,
    CacheStatsResponse,
    CacheClearResponse,
    SettingsModel,
    SettingsUpdate,
    HealthResponse,
    StatusResponse,
)

logger = get_logger("api")


# ============================================================
# STARTUP / SHUTDOWN
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the scheduler unless one was installed beforehand."""
    setup_logging()

    if getattr(app.state, "scheduler", None) is None:
        app.state.scheduler = create_scheduler(settings, get_provider(settings.LLM_PROVIDER))
    app.state.provider = app.state.scheduler.client.llm

    logger.info("FeelingWise bridge starting",
                extra={"model": settings.LLM_PROVIDER})
    yield

    await app.state.scheduler.aclose()
    if app.state.provider is not None:
        await app.state.provider.aclose()
    app.state.scheduler = None
    app.state.provider = None
    logger.info("FeelingWise bridge shutting down")


app = FastAPI(
    title="FeelingWise Bridge",
    description="Local manipulation detection and neutralization for live feeds",
    version=__version__,
    lifespan=lifespan,
)

# Extensions call from chrome-extension:// and moz-extension:// origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
    allow_credentials=False,
)


def _scheduler(request: Request) -> BatchScheduler:
    return request.app.state.scheduler


# ============================================================
# ERROR HANDLERS
# ============================================================

@app.exception_handler(InputRejected)
async def input_rejected_handler(request: Request, exc: InputRejected):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions — return structured error, don't leak internals."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={"error": str(exc), "path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error. The fragment could not be processed."},
    )


# ============================================================
# ROUTES
# ============================================================

@app.post("/neutralize", response_model=FragmentResponse)
async def neutralize(body: NeutralizeRequest, request: Request):
    """Classify one fragment and return its neutralized rendering."""
    scheduler = _scheduler(request)
    if not scheduler.enabled:
        raise HTTPException(503, "FeelingWise is disabled.")

    handle = body.handle or uuid.uuid4().hex
    future = await scheduler.submit(Fragment(text=body.text, handle=handle))
    if future is None:
        raise HTTPException(409, f"Fragment '{handle}' was already submitted.")

    result = await future
    return result.to_dict()


@app.post("/neutralize/batch", response_model=NeutralizeBatchResponse)
async def neutralize_batch(body: NeutralizeBatchRequest, request: Request):
    """Submit many fragments; duplicates are skipped, malformed ones counted."""
    scheduler = _scheduler(request)
    if not scheduler.enabled:
        raise HTTPException(503, "FeelingWise is disabled.")

    futures = []
    skipped = 0
    rejected = 0
    for item in body.items:
        handle = item.handle or uuid.uuid4().hex
        try:
            future = await scheduler.submit(Fragment(text=item.text, handle=handle))
        except InputRejected as e:
            rejected += 1
            logger.warning("Batch item rejected",
                           extra={"handle": handle, "error": str(e)})
            continue
        if future is None:
            skipped += 1
        else:
            futures.append(future)

    results = await asyncio.gather(*futures)
    failed = sum(1 for r in results if not r.ok)

    logger.info(
        f"Batch complete: {len(results)}/{len(body.items)} processed",
        extra={"batch_size": len(body.items)},
    )

    return {
        "results": [r.to_dict() for r in results],
        "total": len(body.items),
        "processed": len(results),
        "skipped": skipped,
        "rejected": rejected,
        "failed": failed,
    }


@app.get("/techniques", response_model=TechniquesResponse)
async def get_techniques():
    """The technique taxonomy and the scoring tables behind it."""
    return {
        "techniques": [
            {
                "name": t.value,
                "label": t.label,
                "description": TECHNIQUE_DESCRIPTIONS[t],
                "vulnerability": VULNERABILITY[t],
            }
            for t in Technique
        ],
        "severity_map": SEVERITY_MAP,
    }


@app.get("/patterns", response_model=PatternsResponse)
async def get_patterns():
    """Pattern families used by the local detector."""
    patterns = detector_patterns()
    return {"total": len(patterns), "patterns": patterns}


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(request: Request):
    return _scheduler(request).cache.stats


@app.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(request: Request):
    cleared = await _scheduler(request).cache.clear()
    logger.info("Cache cleared", extra={"queue_depth": _scheduler(request).queue_depth})
    return {"cleared": cleared}


@app.get("/settings", response_model=SettingsModel)
async def get_settings(request: Request):
    return _scheduler(request).settings


@app.put("/settings", response_model=SettingsModel)
async def put_settings(body: SettingsUpdate, request: Request):
    return _scheduler(request).update_settings(
        enabled=body.enabled, auto_neutralize=body.auto_neutralize,
    )


@app.get("/health", response_model=HealthResponse)
async def health():
    """Liveness check — never touches the provider."""
    return {
        "status": "operational",
        "version": __version__,
        "llm_provider": settings.LLM_PROVIDER,
    }


@app.get("/status", response_model=StatusResponse)
async def status(request: Request):
    """Scheduler and cache counters plus a provider reachability probe."""
    scheduler = _scheduler(request)
    provider = request.app.state.provider
    llm_healthy = False
    if provider is not None:
        try:
            llm_healthy = await provider.is_healthy()
        except Exception as e:
            logger.warning("Provider health probe failed: %s", e)

    return {
        "status": "operational" if scheduler.enabled else "disabled",
        "version": __version__,
        "llm_provider": getattr(provider, "name", "none") if provider else "none",
        "llm_healthy": llm_healthy,
        "scheduler": scheduler.stats,
        "cache": scheduler.cache.stats,
        "client": scheduler.client.stats,
    }


# --- Version Headers Middleware ---
@app.middleware("http")
async def add_version_header(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-FeelingWise-Version"] = __version__
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


# --- Request Logging Middleware ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with method, path, status, duration."""
    path = request.url.path
    if path == "/health":
        return await call_next(request)

    start = time.time()
    response = await call_next(request)
    duration_ms = round((time.time() - start) * 1000, 1)

    logger.info(
        f"{request.method} {path} → {response.status_code} ({duration_ms}ms)",
        extra={
            "method": request.method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        },
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.HOST, port=settings.PORT)
