import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from config import Settings, settings
from errors import (
    GENERIC_ERROR_MESSAGE,
    ChatValidationError,
    PayloadTooLargeError,
    ProxyError,
)
from models import HealthResponse, ModelDescriptor, ModelListResponse, UpstreamMessage
from normalizer import normalize
from rate_limit import SlidingWindowRateLimiter
from registry import ModelRegistry, build_default_registry
from relay import relay_buffered, stream_chat
from upstream import UpstreamClient

# --- Logging Setup ---
# Map string level names to logging constants
log_level_str = settings.LOG_LEVEL.upper()
log_level_map = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
    "NONE": logging.CRITICAL + 1, # Effectively disable logging
}
log_level = log_level_map.get(log_level_str, logging.INFO) # Default to INFO if invalid

# Configure basic logging
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    # Force=True might be needed if uvicorn also configures logging
    force=True
)
logger = logging.getLogger(__name__)
logger.info(f"Logging configured with level: {logging.getLevelName(log_level)}")
# --- End Logging Setup ---

API_PREFIX = "/api"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no", # Stop nginx from buffering the event stream
}

router = APIRouter(prefix=API_PREFIX)


def client_key(request: Request, trust_proxy: bool) -> str:
    """Identifies the caller for rate limiting."""
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # One trusted proxy in front of us: it appends the real client address last
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            if hops:
                return hops[-1]
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _error_response(e: ProxyError, endpoint: str) -> JSONResponse:
    if e.is_server_error:
        logger.error(f"{endpoint} failed ({e.status_code}): {e.detail or e.message}")
    else:
        logger.warning(f"{endpoint} rejected ({e.status_code}): {e.detail or e.message}")
    return e.to_response()


async def _read_json_body(request: Request, max_bytes: int) -> Dict[str, Any]:
    declared_length = request.headers.get("content-length")
    if declared_length and declared_length.isdigit() and int(declared_length) > max_bytes:
        raise PayloadTooLargeError(detail=f"Declared body size {declared_length} exceeds {max_bytes}")

    # Chunked uploads carry no Content-Length, so count while reading
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise PayloadTooLargeError(detail=f"Body exceeds {max_bytes} bytes")
        chunks.append(chunk)
    body = b"".join(chunks)

    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ChatValidationError("Invalid JSON body", detail=str(e)) from e

    if not isinstance(data, dict):
        raise ChatValidationError("Request body must be a JSON object")
    return data


async def _prepare_chat(request: Request) -> Tuple[ModelDescriptor, List[UpstreamMessage]]:
    """
    Validates a chat/stream request and builds the provider messages.
    Nothing is sent upstream unless every check here passes.
    """
    state = request.app.state
    body = await _read_json_body(request, state.settings.MAX_BODY_BYTES)

    state.upstream.require_credential()
    descriptor = state.registry.resolve(body.get("model"))
    messages = normalize(body.get("messages"), descriptor)

    logger.info(f"Received chat request for model: {descriptor.key} ({len(messages)} message(s))")
    return descriptor, messages


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Basic health check endpoint."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return HealthResponse(service=request.app.state.settings.SERVICE_NAME, timestamp=timestamp)


@router.get("/models", response_model=ModelListResponse)
async def get_models(request: Request):
    """Returns the available models and their capabilities."""
    registry: ModelRegistry = request.app.state.registry
    return ModelListResponse(models=registry.list_models(), default_model=registry.default_key)


@router.post("/chat")
async def chat(request: Request):
    """Main chat endpoint - proxies one buffered completion to OpenRouter."""
    started_at = time.monotonic()
    try:
        descriptor, messages = await _prepare_chat(request)
        response = await request.app.state.upstream.send(descriptor, messages)
        result = relay_buffered(response, descriptor, started_at)
        return JSONResponse(content=result.model_dump(by_alias=True))

    except ProxyError as e:
        return _error_response(e, "/api/chat")
    except Exception as e:
        logger.exception(f"Chat endpoint error: {e}")
        return JSONResponse(content={"error": GENERIC_ERROR_MESSAGE}, status_code=500)


@router.post("/stream")
async def stream(request: Request):
    """
    Streaming chat endpoint. Validation failures are answered with a plain
    JSON error; once validated, everything is reported in-stream.
    """
    try:
        descriptor, messages = await _prepare_chat(request)
    except ProxyError as e:
        return _error_response(e, "/api/stream")
    except Exception as e:
        logger.exception(f"Stream endpoint error: {e}")
        return JSONResponse(content={"error": GENERIC_ERROR_MESSAGE}, status_code=500)

    generator = stream_chat(request.app.state.upstream, descriptor, messages)
    return StreamingResponse(generator, media_type="text/event-stream", headers=SSE_HEADERS)


def _register_frontend(app: FastAPI, static_dir: Path) -> None:
    """Serves the web front-end, falling back to index.html for client-side routes."""

    @app.get("/{full_path:path}", include_in_schema=False)
    async def frontend(full_path: str):
        if full_path == API_PREFIX.strip("/") or full_path.startswith(API_PREFIX.strip("/") + "/"):
            return JSONResponse(content={"error": "Not found"}, status_code=404)

        root = static_dir.resolve()
        if full_path:
            candidate = (root / full_path).resolve()
            # Refuse anything that escapes the static directory
            if root in candidate.parents and candidate.is_file():
                return FileResponse(candidate)

        index = root / "index.html"
        if index.is_file():
            return FileResponse(index)
        return JSONResponse(content={"error": "Not found"}, status_code=404)


def log_startup_banner(app_settings: Settings, registry: ModelRegistry, upstream: UpstreamClient) -> None:
    logger.info("OffGrid AI ToolKit Online - Server Started")
    logger.info(f"  Local:   http://localhost:{app_settings.PORT}")
    logger.info(f"  Network: http://{app_settings.HOST}:{app_settings.PORT}")
    logger.info("  Available Models:")
    for descriptor in registry.list_models():
        logger.info(f"    - {descriptor.display_name} ({descriptor.key})")
    logger.info(f"  API Key: {'Configured' if upstream.is_configured else 'NOT CONFIGURED'}")


def create_app(
    app_settings: Optional[Settings] = None,
    registry: Optional[ModelRegistry] = None,
    upstream_client: Optional[UpstreamClient] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    """Builds the application. Every collaborator can be substituted, e.g. in tests."""
    app_settings = app_settings or settings

    app = FastAPI(
        title="OffGrid AI ToolKit Online",
        description="Secure proxy between the web front-end and the OpenRouter chat API.",
        version="1.0.0",
    )
    app.state.settings = app_settings
    app.state.registry = registry or build_default_registry()
    app.state.upstream = upstream_client or UpstreamClient.from_settings(app_settings)
    app.state.rate_limiter = rate_limiter or SlidingWindowRateLimiter.from_settings(app_settings)

    @app.on_event("startup")
    async def startup_event():
        """Log what this instance serves."""
        log_startup_banner(app.state.settings, app.state.registry, app.state.upstream)

    @app.middleware("http")
    async def rate_limit_api(request: Request, call_next):
        if not request.url.path.startswith(API_PREFIX + "/"):
            return await call_next(request)

        key = client_key(request, app.state.settings.TRUST_PROXY)
        decision = await app.state.rate_limiter.hit(key)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {request.method} {request.url.path}")
            return JSONResponse(content=decision.to_payload(), status_code=429, headers=decision.headers())

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        # Method and path only, request bodies may contain private images
        if request.url.path.startswith(API_PREFIX + "/"):
            logger.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    origins = app_settings.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)
    _register_frontend(app, Path(app_settings.STATIC_DIR))
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    # For local development, run directly:
    # Set OPENROUTER_API_KEY env var or create .env file
    # Example: export OPENROUTER_API_KEY='sk-or-...'
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
