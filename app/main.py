import hmac
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from app.core.config import API_VERSION, CORS_ALLOWED_ORIGINS
from app.logging_config import configure_logging
from app.authn.api_models import (
    AddRootRequest,
    ErrorCode,
    HealthResponse,
    LogLevelRequest,
    VerifyRequest,
    VerifyResponse,
)
from app.authn.exceptions import (
    ConfigurationError,
    MalformedRequestError,
    RootRevokedError,
    RootSignatureError,
)
from app.authn.rate_limit import client_id_from_headers, get_rate_limiter
from app.authn.roots import RemoteRootRegistry, RootRegistry
from app.authn.verify import get_product_verifier

configure_logging()
log = logging.getLogger("tlb")

app = FastAPI(title="Last Bounce Verifier", version=API_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

_started_at = time.monotonic()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _remote(request: Request) -> str:
    return request.client.host if request.client else "-"


@app.middleware("http")
async def req_log(request: Request, call_next):
    start = time.time()
    route = request.url.path
    resp = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)
    log.info(f"request_complete status={resp.status_code} duration_ms={duration_ms}",
             extra={"request_id": "-", "route": route, "remote_addr": _remote(request)})
    return resp


@app.get("/api/health")
def health():
    return HealthResponse(
        status="ok",
        timestamp=_now(),
        version=API_VERSION,
        uptime=round(time.monotonic() - _started_at, 3),
    ).model_dump()


@app.post("/api/verify")
async def verify(request: Request):
    """Verify a product: admission control, request decoding, three-way check.

    Status codes: 429 rate limited, 400 malformed request, 500 service
    fault, 200 for every computed verdict including authentic=false.
    """
    req_id = uuid.uuid4().hex[:12]
    client_id = client_id_from_headers(request.headers, request.client.host if request.client else None)
    decision = get_rate_limiter().admit(client_id)
    headers = decision.headers()

    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content=VerifyResponse.failure(ErrorCode.RATE_LIMITED, _now()).to_json(),
            headers=headers,
        )

    try:
        body = await request.json()
        verification_request = VerifyRequest.model_validate(body).to_verification_request()
    except (ValueError, ValidationError, MalformedRequestError) as e:
        log.info(f"verify_rejected reason={type(e).__name__}",
                 extra={"request_id": req_id, "route": "/api/verify", "client_id": client_id})
        return JSONResponse(
            status_code=400,
            content=VerifyResponse.failure(ErrorCode.MALFORMED_REQUEST, _now()).to_json(),
            headers=headers,
        )

    try:
        result = await get_product_verifier().verify(verification_request)
    except ConfigurationError as e:
        log.error(f"verify_failed code={e.code} message={e.message}",
                  extra={"request_id": req_id, "route": "/api/verify", "client_id": client_id})
        return JSONResponse(
            status_code=500,
            content=VerifyResponse.failure(ErrorCode.INTERNAL_ERROR, _now()).to_json(),
            headers=headers,
        )
    except Exception:
        log.exception("verify_failed", extra={"request_id": req_id, "route": "/api/verify",
                                              "client_id": client_id})
        return JSONResponse(
            status_code=500,
            content=VerifyResponse.failure(ErrorCode.INTERNAL_ERROR, _now()).to_json(),
            headers=headers,
        )

    log.info("verify_called", extra={"request_id": req_id, "route": "/api/verify",
                                     "remote_addr": _remote(request), "client_id": client_id})
    return JSONResponse(
        content=VerifyResponse.from_result(result, _now()).to_json(),
        headers=headers,
    )


@app.api_route("/api/verify", methods=["GET", "PUT", "PATCH", "DELETE"])
def verify_method_not_allowed():
    return JSONResponse(
        status_code=405,
        content=VerifyResponse.failure(ErrorCode.METHOD_NOT_ALLOWED, _now()).to_json(),
        headers={"Allow": "POST, OPTIONS"},
    )


@app.options("/api/verify")
def verify_options():
    # CORS preflights are answered by the middleware before reaching here
    return Response(status_code=200, headers={"Allow": "POST, OPTIONS"})


# =============================================================================
# Administrative endpoints
# =============================================================================


def _admin_disabled() -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Admin endpoint disabled"})


def _check_admin_token(request: Request) -> Optional[JSONResponse]:
    """Return an error response unless the bearer token matches TLB_ADMIN_TOKEN."""
    from app.core.config import ADMIN_ENDPOINT_ENABLED, ADMIN_TOKEN

    if not ADMIN_ENDPOINT_ENABLED or not ADMIN_TOKEN:
        return _admin_disabled()
    supplied = request.headers.get("Authorization", "")
    if not hmac.compare_digest(supplied.encode(), f"Bearer {ADMIN_TOKEN}".encode()):
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
    return None


def _mutable_registry() -> RootRegistry:
    store = get_product_verifier().root_store
    if not isinstance(store, RootRegistry):
        raise ConfigurationError("Configured root store does not support administration")
    return store


@app.get("/admin")
def admin():
    """Return configuration and store state for operator visibility.

    Gated by TLB_ADMIN_ENDPOINT_ENABLED (default: True for dev, False for prod).
    """
    from app.core.config import (
        ADMIN_ENDPOINT_ENABLED,
        ADMIN_TOKEN,
        CMAC_LENGTH_BYTES,
        GROTH16_PROOF_LENGTH_BYTES,
        MIN_PUBLIC_INPUTS,
        PROOF_VERIFY_TIMEOUT_SECONDS,
        RATE_LIMIT_MAX_REQUESTS,
        RATE_LIMIT_WINDOW_MS,
        ROOT_ISSUER_PUBLIC_KEY,
        ROOT_SOURCE_URL,
        TRUSTED_ROOTS_PATH,
    )

    if not ADMIN_ENDPOINT_ENABLED:
        return _admin_disabled()

    verifier_state = {"ready": False}
    try:
        verifier = get_product_verifier()
        vk = verifier.membership_verifier.verification_key
        verifier_state = {
            "ready": True,
            "circuit_version": vk.circuit_version,
            "verification_key_fingerprint": vk.fingerprint,
            "trusted_roots": verifier.root_store.size(),
        }
    except ConfigurationError as e:
        verifier_state["error"] = e.code

    return {
        "normative": {
            "cmac_length_bytes": CMAC_LENGTH_BYTES,
            "groth16_proof_length_bytes": GROTH16_PROOF_LENGTH_BYTES,
            "min_public_inputs": MIN_PUBLIC_INPUTS,
        },
        "configurable": {
            "rate_limit_max_requests": RATE_LIMIT_MAX_REQUESTS,
            "rate_limit_window_ms": RATE_LIMIT_WINDOW_MS,
            "proof_verify_timeout_seconds": PROOF_VERIFY_TIMEOUT_SECONDS,
        },
        "trust": {
            "root_source_url": ROOT_SOURCE_URL,
            "trusted_roots_path": TRUSTED_ROOTS_PATH,
            "issuer_key_configured": ROOT_ISSUER_PUBLIC_KEY is not None,
            "root_mutation_enabled": ADMIN_TOKEN is not None,
        },
        "verifier": verifier_state,
        "rate_limit": {
            "tracked_clients": get_rate_limiter().store.size(),
        },
        "environment": {
            "version": API_VERSION,
            "log_level_name": logging.getLevelName(logging.getLogger().getEffectiveLevel()),
        },
    }


@app.post("/admin/log-level")
def set_log_level(req: LogLevelRequest):
    """Change log level at runtime (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Gated by TLB_ADMIN_ENDPOINT_ENABLED.
    """
    from app.core.config import ADMIN_ENDPOINT_ENABLED

    if not ADMIN_ENDPOINT_ENABLED:
        return _admin_disabled()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    level_upper = req.level.upper()

    if level_upper not in valid_levels:
        return JSONResponse(
            status_code=400,
            content={"detail": f"Invalid log level. Must be one of: {valid_levels}"}
        )

    logging.getLogger().setLevel(getattr(logging, level_upper))
    log.setLevel(getattr(logging, level_upper))
    log.info(f"log level changed to {level_upper}")
    return {"success": True, "log_level": level_upper}


@app.post("/admin/roots")
async def admin_add_root(req: AddRootRequest, request: Request):
    denied = _check_admin_token(request)
    if denied is not None:
        return denied

    signature = None
    if req.signature:
        try:
            signature = bytes.fromhex(req.signature)
        except ValueError:
            return JSONResponse(status_code=400, content={"detail": "signature must be hex"})

    try:
        record = _mutable_registry().add_root(req.root, req.circuit_version, signature)
    except (RootSignatureError, RootRevokedError) as e:
        return JSONResponse(status_code=400, content={"detail": e.message, "code": e.code})
    except ConfigurationError as e:
        return JSONResponse(status_code=500, content={"detail": e.message, "code": e.code})

    return {"root": record.root, "circuit_version": record.circuit_version, "trusted": True}


@app.delete("/admin/roots/{root}")
def admin_revoke_root(root: str, request: Request):
    denied = _check_admin_token(request)
    if denied is not None:
        return denied

    try:
        _mutable_registry().revoke_root(root)
    except ConfigurationError as e:
        return JSONResponse(status_code=500, content={"detail": e.message, "code": e.code})
    return {"root": root, "revoked": True}


@app.post("/admin/roots/refresh")
async def admin_refresh_roots(request: Request):
    denied = _check_admin_token(request)
    if denied is not None:
        return denied

    try:
        store = get_product_verifier().root_store
        if not isinstance(store, RemoteRootRegistry):
            return JSONResponse(status_code=400, content={"detail": "No remote trust source configured"})
        count = await store.refresh()
    except ConfigurationError as e:
        return JSONResponse(status_code=503, content={"detail": e.message, "code": e.code})
    return {"trusted_roots": count}
