import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as ModelValidationError
from starlette.concurrency import run_in_threadpool

from agegate.challenge import ChallengeBuilder
from agegate.errors import ConfigError, ErrorCode, describe
from agegate.hashing import context_hash
from agegate.proof import Ed25519AttestationPrimitive, TrustStoreProvider
from agegate.replay import ChallengeLedger
from agegate.subject import new_subject_id
from agegate.verifier import FailureReason, ProofVerifier, VerificationVerdict, VerifierState

from .config import Settings, validate_config
from .keys import FileTrustStore
from .logging_config import audit_log, configure_logging, get_request_id, set_request_id
from .models import ChallengeRequest, VerifyRequest
from .rate_limit import RateLimiter, RateLimitResult
from .security import (
    ValidationError,
    extract_client_id,
    sanitize_for_logging,
    validate_attestation_id,
    validate_body_size,
    validate_role,
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


# ============================================================
# Response shapes
# ============================================================

def _json(body: Dict[str, Any], status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={**CORS_HEADERS, **(headers or {})})


def error_body(code: ErrorCode, **extra) -> Dict[str, Any]:
    body = {"status": "error", "result": False, "reason": describe(code.value), "error_code": code.value}
    body.update(extra)
    return body


def verdict_response(verdict: VerificationVerdict) -> JSONResponse:
    if verdict.is_valid:
        return _json({"status": "success", "result": True, "credentialSubject": verdict.disclosure})

    code = verdict.error_code
    if code == ErrorCode.INVALID_INPUTS:
        # Structural failures are reported with HTTP 200
        return _json(error_body(code))
    if code == ErrorCode.INTERNAL_ERROR:
        return _json(error_body(code), status_code=500)
    return _json(error_body(code, details=verdict.to_dict()), status_code=500)


def rate_limited_response(limit: RateLimitResult) -> JSONResponse:
    return _json(error_body(ErrorCode.RATE_LIMITED), status_code=429, headers=limit.headers())


def _safe_context_hash(user_context_data: Any) -> Optional[str]:
    if user_context_data is None:
        return None
    try:
        return context_hash(user_context_data)
    except ValueError:
        return None


def _parse_json_object(raw: bytes) -> Dict[str, Any]:
    validate_body_size(raw)
    if not raw.strip():
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValidationError("body", "must be a JSON object")
    return data


# ============================================================
# Application factory
# ============================================================

def create_app(
    settings: Optional[Settings] = None,
    trust_store: Optional[TrustStoreProvider] = None
) -> FastAPI:
    """
    Build the verification service.

    Raises:
        ConfigError: If the policy or protocol binding is invalid. The
            binding is exercised by building a throwaway challenge, so a bad
            scope or endpoint stops the service before it serves traffic.
    """
    settings = settings or Settings.from_env()
    trust_store = trust_store or FileTrustStore(settings.trust_store_path)

    builder = ChallengeBuilder(ttl_seconds=settings.challenge_ttl_seconds, dev_mode=settings.dev_mode)
    builder.build(settings.scope, new_subject_id(), settings.policy, settings.endpoint, settings.endpoint_kind)

    verifier = ProofVerifier(
        settings.policy,
        Ed25519AttestationPrimitive(trust_store),
        supported_ids=settings.attestation_ids,
        timeout_seconds=settings.verify_timeout_seconds,
    )
    ledger = ChallengeLedger(max_entries=settings.challenge_ledger_max) if settings.require_challenge else None
    verify_limiter = RateLimiter(settings.verify_rpm)
    challenge_limiter = RateLimiter(settings.challenge_rpm)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, json_format=settings.log_json)
        missing = [name for name, ok in validate_config(settings).items() if not ok]
        if missing:
            logger.warning("Missing configuration files: %s", ", ".join(missing))
        logger.info("agegate service started (env=%s, policy=%s)", settings.env, settings.policy.hash)
        yield
        verifier.shutdown()

    app = FastAPI(title="agegate verification service", lifespan=lifespan)
    app.state.settings = settings
    app.state.verifier = verifier
    app.state.ledger = ledger

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        for key, value in CORS_HEADERS.items():
            response.headers.setdefault(key, value)
        response.headers["X-Request-ID"] = get_request_id()
        return response

    def _client_id(request: Request) -> str:
        return extract_client_id(request.headers, request.client.host if request.client else None)

    def _verify_bundle(req: VerifyRequest) -> VerificationVerdict:
        expected = ledger.expected_context_for(req.user_context_data) if ledger else None
        verdict = verifier.verify(
            req.attestation_id,
            req.proof,
            req.signals,
            req.user_context_data,
            expected_context=expected,
        )
        if verdict.is_valid and ledger is not None:
            if not ledger.consume(req.user_context_data.get("nonce")):
                audit_log.security_event("CHALLENGE_REPLAY", severity="high")
                return VerificationVerdict.rejected(FailureReason.CONTEXT_MISMATCH, VerifierState.POLICY_BOUND)
        return verdict

    @app.options("/api/verify")
    @app.options("/api/challenge")
    def preflight():
        return Response(status_code=200, headers=CORS_HEADERS)

    @app.post("/api/verify")
    async def verify(request: Request):
        client_id = _client_id(request)
        limit = verify_limiter.check(f"verify:{client_id}")
        if not limit.allowed:
            audit_log.rate_limit_exceeded(client_id, "/api/verify")
            return rate_limited_response(limit)

        try:
            data = _parse_json_object(await request.body())
            logger.debug("Verification request body: %s", sanitize_for_logging(data))
            req = VerifyRequest.model_validate(data)
            if req.attestation_id is not None:
                validate_attestation_id(req.attestation_id)
        except (ValidationError, ModelValidationError, ValueError) as e:
            logger.info("Rejected malformed verification request: %s", type(e).__name__)
            return verdict_response(VerificationVerdict.rejected(FailureReason.INVALID_INPUTS))

        try:
            ctx_hash = _safe_context_hash(req.user_context_data)
            audit_log.verification_request(
                str(req.attestation_id) if req.attestation_id is not None else None,
                ctx_hash,
                client_id,
            )
            verdict = await run_in_threadpool(_verify_bundle, req)
            audit_log.verification_decision(
                verdict.is_valid,
                failure_reason=verdict.failure_reason.value if verdict.failure_reason else None,
                reached=verdict.reached.value,
                context_hash=ctx_hash,
            )
            return verdict_response(verdict)
        except Exception:
            logger.exception("Error verifying proof")
            return _json(error_body(ErrorCode.INTERNAL_ERROR), status_code=500)

    @app.post("/api/challenge")
    async def issue_challenge(request: Request):
        client_id = _client_id(request)
        limit = challenge_limiter.check(f"challenge:{client_id}")
        if not limit.allowed:
            audit_log.rate_limit_exceeded(client_id, "/api/challenge")
            return rate_limited_response(limit)

        try:
            req = ChallengeRequest.model_validate(_parse_json_object(await request.body()))
            role = validate_role(req.role)
            challenge = builder.build(
                settings.scope,
                req.subject_id or new_subject_id(),
                settings.policy,
                settings.endpoint,
                settings.endpoint_kind,
            )
        except (ValidationError, ModelValidationError, ConfigError, ValueError) as e:
            logger.info("Rejected challenge request: %s", e)
            return _json(error_body(ErrorCode.INVALID_INPUTS), status_code=400)

        if ledger is not None and not ledger.issue(challenge):
            audit_log.security_event("CHALLENGE_LEDGER_FULL", severity="medium")
            return _json(error_body(ErrorCode.RATE_LIMITED), status_code=503, headers={"Retry-After": "60"})
        body = challenge.to_dict()
        audit_log.challenge_issued(challenge.challenge_id, role.value, body["expires_at"])
        return _json({"status": "success", "challenge": body, "token": challenge.encode()})

    return app


app = create_app()
