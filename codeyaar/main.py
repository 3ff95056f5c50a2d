"""
FastAPI application — the codeyaar entry point.

Endpoints:
  POST /ai-code-assistant   generate / debug / explain, SSE passthrough
  POST /learning-assistant  mentor chat, single JSON answer
  POST /generate-roadmap    N-step learning roadmap
  GET  /models              model ids the code assistant accepts
  GET  /health

Every POST endpoint also answers OPTIONS with an empty 200 and permissive
CORS headers. GatewayErrors become `{error, ...}` JSON with their mapped
status; anything else is logged with its traceback and answered with a
generic 500.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from codeyaar import __version__
from codeyaar.config import get_config
from codeyaar.errors import GatewayError, InternalError, MalformedRequest
from codeyaar.gateway import CodeRequest, Gateway, LearningRequest

# ---------------------------------------------------------------------------
# Globals, set up by the lifespan handler
# ---------------------------------------------------------------------------
gateway: Gateway | None = None

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global gateway

    cfg = get_config()
    _setup_logging(cfg)

    gateway = Gateway.from_config(cfg)

    rl = gateway.rate_limiter
    logger.info(
        "codeyaar %s started — upstream %s (default model %s)",
        __version__, gateway.relay.backend.url or "<unset>", gateway.policy.default_model,
    )
    logger.info(
        "Rate limit: %s (%s)",
        "enabled" if rl.enabled else "disabled",
        "fail-open" if rl.fail_open else "fail-closed",
    )
    logger.info(
        "Safety filter: %d patterns; models: %d; history: %s; wiretap: %s",
        len(gateway.content_filter), len(gateway.policy.models),
        "enabled" if gateway.history else "disabled",
        gateway.wire.log_path if gateway.wire else "disabled",
    )
    if not gateway.relay.backend.configured:
        logger.warning("Upstream API key not configured — assistant requests will fail with 500")

    yield

    if gateway.wire:
        gateway.wire.close()
    logger.info("codeyaar shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="codeyaar",
    description="AI gateway for the Code-Yaar learning platform.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=CORS_HEADERS)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    err = InternalError()
    return JSONResponse(err.to_body(), status_code=err.status_code, headers=CORS_HEADERS)


async def _read_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as e:
        raise MalformedRequest("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise MalformedRequest("Invalid JSON body")
    return body


def _preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


# ---------------------------------------------------------------------------
# Assistant endpoints
# ---------------------------------------------------------------------------

@app.options("/ai-code-assistant")
@app.options("/learning-assistant")
@app.options("/generate-roadmap")
async def preflight():
    return _preflight()


@app.post("/ai-code-assistant")
async def ai_code_assistant(request: Request):
    """
    Code generation / debugging / explanation.
    Streams the upstream SSE body through unless the request sets stream: false.
    """
    admission = await gateway.admit(request.headers.get("authorization"))
    body = await _read_body(request)
    req = CodeRequest.from_body(body, gateway.code_default_model_id)

    if req.stream:
        stream = await gateway.stream_code(admission, req)
        return StreamingResponse(
            stream,
            media_type="text/event-stream",
            headers={**CORS_HEADERS, **STREAM_HEADERS},
        )

    result = await gateway.run_code(admission, req)
    return JSONResponse(result.to_body(admission.quota), headers=CORS_HEADERS)


@app.post("/learning-assistant")
async def learning_assistant(request: Request):
    """Mentor chat for the current lesson step."""
    admission = await gateway.admit(request.headers.get("authorization"))
    body = await _read_body(request)
    data = await gateway.learning_reply(admission, LearningRequest.from_body(body))
    return JSONResponse(data, headers=CORS_HEADERS)


@app.post("/generate-roadmap")
async def generate_roadmap(request: Request):
    """Learning roadmap for a language and level. Not rate limited."""
    admission = await gateway.admit(request.headers.get("authorization"), rate_limited=False)
    body = await _read_body(request)
    data = await gateway.generate_roadmap(admission, body)
    return JSONResponse(data, headers=CORS_HEADERS)


# ---------------------------------------------------------------------------
# Info endpoints
# ---------------------------------------------------------------------------

@app.get("/models")
async def list_models():
    """Client model ids and the provider model each maps to."""
    policy = gateway.policy
    return JSONResponse({
        "default": gateway.code_default_model_id,
        "fallback": policy.default_model,
        "models": dict(policy.models),
    })


@app.get("/health")
async def health():
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "upstream_configured": gateway.relay.backend.configured if gateway else False,
    })
