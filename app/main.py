import json
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ---------- Structured Logging ----------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","msg":"%(message)s"}',
    datefmt='%Y-%m-%dT%H:%M:%S'
)
logger = logging.getLogger("chat-router")

# ---------- Prometheus ----------
from prometheus_fastapi_instrumentator import Instrumentator

from app.schemas import ChatRequest, ChatResponse, DebugRouteRequest, PerformanceOut
from app.settings import Settings
from graph.errors import UpstreamCompletionFailure
from graph.router import build_pipeline, debug_router_decision

APOLOGY = "Sorry, there was a problem contacting the API. Please try again."


# ---------- Startup (Fail Fast) ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Resolve configuration once; a missing API key or bad catalog stops startup."""
    settings = Settings.from_env()
    app.state.settings = settings
    app.state.pipeline = build_pipeline(settings)
    logger.info(f"Config validated. {len(app.state.pipeline.config.catalog)} models registered, "
                f"response format '{settings.response_format}'.")
    yield
    logger.info("Shutting down chat router.")


app = FastAPI(title="Chat Router", version="1.0.0", lifespan=lifespan)

# Init Metrics
Instrumentator().instrument(app).expose(app)


@app.exception_handler(UpstreamCompletionFailure)
async def upstream_failure_handler(request: Request, exc: UpstreamCompletionFailure):
    # `message` doubles as the legacy reply field so old clients show the apology.
    return JSONResponse(
        status_code=502,
        content={
            "error": "upstream_completion_failure",
            "message": APOLOGY,
            "model": exc.model,
        },
    )


# Global Exception Handler for clean 500s
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled error on {request.url.path}: {type(exc).__name__}: {exc}")
    return Response(
        content=json.dumps({
            "error": "Internal Server Error",
            "detail": str(exc),
            "type": type(exc).__name__
        }),
        status_code=500,
        media_type="application/json"
    )


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)


# --- /api/chat: route, complete, clean ---
@app.post("/api/chat")
async def chat(request: Request, body: ChatRequest):
    received_at = time.perf_counter()
    pipeline = request.app.state.pipeline
    settings = request.app.state.settings

    out = await pipeline.run(body.message, received_at=received_at)

    result = ChatResponse(
        model=out["model"],
        reasoning=out["reasoning"],
        performance=PerformanceOut(**out["performance"]),
        reply=out["reply"],
    )
    logger.info(json.dumps({
        "evt": "chat_done",
        "model": result.model,
        "lat_ms": int((time.perf_counter() - received_at) * 1000),
        "completion_ms": int(out["elapsed_ms"]),
        "sanitized": out["sanitized"],
    }))

    if settings.response_format == "legacy":
        content = result.as_legacy().model_dump()
    else:
        content = result.model_dump(by_alias=True)

    return JSONResponse(
        content=content,
        headers={
            "X-Chat-Router-Model": result.model,
            "X-Chat-Router-Sanitized": str(out["sanitized"]).lower(),
            "X-Chat-Router-Residual-Artifacts": str(out["residual_artifacts"]).lower(),
        },
    )


# --- /debug/router_decision: routing only ---
@app.post("/debug/router_decision")
def debug_route_decision(request: Request, req: DebugRouteRequest):
    """
    Show which model the classifier would pick for a prompt, without calling it.

    Returns model, reasoning, whether the id is in the catalog, and the catalog ids.
    """
    return debug_router_decision(request.app.state.pipeline, req.prompt)


# --- /v1/models (compat OpenAI) ---
@app.get("/v1/models")
def list_models_openai(request: Request):
    catalog = request.app.state.pipeline.config.catalog
    created = int(time.time())
    data = [
        {
            "id": entry.id,
            "object": "model",
            "owned_by": entry.id.split("/", 1)[0],
            "created": created,
            "default": entry.id == catalog.default_model,
        }
        for entry in catalog.entries.values()
    ]
    return {"object": "list", "data": data}


@app.get("/healthz")
def healthz(): return {"ok": True}


@app.head("/healthz")
def _healthz_head():
    return Response(status_code=200)
