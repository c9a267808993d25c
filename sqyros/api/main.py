"""FastAPI application entrypoint and HTTP endpoints."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import redis
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import PyMongoError

from sqyros.agents.chat_agent import ChatAgent
from sqyros.agents.guide_agent import GuideAgent
from sqyros.agents.router_agent import RouterAgent
from sqyros.core.auth import user_id_from_authorization
from sqyros.core.errors import AuthError, InvalidRequestError, QuotaExceededError, SqyrosError, UpstreamError
from sqyros.core.ledger import QuotaPolicy, UsageLedger
from sqyros.core.llm import LLMGateway, LLMGatewayConfig
from sqyros.core.logging import configure_logging
from sqyros.core.rate_limiter import RateLimiter, RateLimiterConfig
from sqyros.core.settings import get_settings
from sqyros.db.mongo import Mongo
from sqyros.models.routing_models import ConversationTurn, ModelTier, RoutingContext
from sqyros.models.task_input import ChatInput, GuideInput, RouterInput
from sqyros.models.usage_models import UsageAction

log = structlog.get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

_PUBLIC_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}


class GuideRequest(BaseModel):
    system: str | None = None
    device: str | None = None
    connection: str | None = None
    category: str | None = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    conversation_history: list[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")


class RouterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_message: str | None = Field(default=None, alias="userMessage")
    context: RoutingContext | None = None
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    force_model: str | None = Field(default=None, alias="forceModel")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """FastAPI lifespan hook: configure logging and wire the store, LLM gateway and limiter."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    application.state.mongo = Mongo(settings.MONGODB_URL, settings.MONGODB_DATABASE)
    application.state.llm = LLMGateway(LLMGatewayConfig.from_settings(settings))
    application.state.rate_limiter = None
    if settings.RATE_LIMIT_ENABLED:
        application.state.rate_limiter = RateLimiter(
            RateLimiterConfig(
                redis_url=settings.REDIS_URL,
                requests_per_min=settings.RATE_LIMIT_REQUESTS_PER_MIN,
                burst=settings.RATE_LIMIT_BURST,
            )
        )
    await application.state.mongo.ping()
    await application.state.mongo.ensure_indexes()
    log.info("api_startup_complete")
    yield
    if getattr(application.state, "rate_limiter", None) is not None:
        await application.state.rate_limiter.close()
    await application.state.mongo.close()
    log.info("api_shutdown_complete")


app = FastAPI(title="Sqyros API", version="1.0.0", lifespan=lifespan)


def _json(status_code: int, content: dict[str, Any], headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers={**CORS_HEADERS, **(headers or {})})


def _client_identity(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return f"ip:{xff.split(',')[0].strip()}"
    host = getattr(getattr(request, "client", None), "host", None)
    return f"ip:{host or 'unknown'}"


@app.middleware("http")
async def cors_auth_and_rate_limit(request: Request, call_next):
    if request.method == "OPTIONS":
        return PlainTextResponse("ok", headers=CORS_HEADERS)

    structlog.contextvars.clear_contextvars()
    settings = get_settings()

    auth_error: AuthError | None = None
    if request.url.path.startswith("/v1/"):
        try:
            user_id = user_id_from_authorization(request.headers.get("authorization"), secret=settings.JWT_SECRET)
        except AuthError as e:
            auth_error = e
        else:
            request.state.user_id = user_id
            structlog.contextvars.bind_contextvars(user_id=user_id, path=request.url.path)

    # Rejected callers are still bucketed, by client IP.
    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is not None and request.url.path not in _PUBLIC_PATHS:
        result = await limiter.allow(_client_identity(request))
        if not result.allowed:
            headers = {
                "Retry-After": str(int(result.retry_after_s) + 1),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
            }
            return _json(429, {"error": "rate_limited"}, headers)

    if auth_error is not None:
        return _json(auth_error.status_code, auth_error.to_payload())

    response = await call_next(request)
    response.headers.setdefault("Access-Control-Allow-Origin", "*")
    return response


@app.exception_handler(SqyrosError)
async def sqyros_error_handler(request: Request, exc: SqyrosError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, stage=exc.stage, error=str(exc))
    return _json(exc.status_code, exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    _ = exc
    return _json(400, {"error": "Invalid request body"})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    log.error("store_unavailable", path=request.url.path, error=str(exc))
    return _json(500, {"error": "Internal server error"})


def _ledger(request: Request) -> UsageLedger:
    settings = get_settings()
    policy = QuotaPolicy(
        guides_per_month=settings.FREE_GUIDES_PER_MONTH,
        questions_per_day=settings.FREE_QUESTIONS_PER_DAY,
    )
    return UsageLedger(request.app.state.mongo, policy)


async def _enforce_quota(ledger: UsageLedger, user_id: str, action: UsageAction) -> None:
    """Reject before any paid call when the caller's free allowance is used up."""
    tier = await ledger.resolve_tier(user_id)
    check = await ledger.check_and_reserve(user_id, tier, action)
    if not check.allowed:
        raise QuotaExceededError(ledger.policy.exceeded_message(action), upgrade_url=get_settings().UPGRADE_URL)


@app.post("/v1/guides/generate")
async def generate_guide(body: GuideRequest, request: Request) -> JSONResponse:
    """Generate a device integration guide (free tier: monthly cap)."""
    user_id: str = request.state.user_id
    system = (body.system or "").strip()
    device = (body.device or "").strip()
    connection = (body.connection or "").strip()
    if not (system and device and connection):
        raise InvalidRequestError("system, device, and connection are required")
    category = (body.category or "").strip() or None

    ledger = _ledger(request)
    await _enforce_quota(ledger, user_id, UsageAction.guide)

    agent = GuideAgent(request.app.state.llm)
    try:
        result = await agent.process(GuideInput(system=system, device=device, connection=connection, category=category))
    except UpstreamError as e:
        e.public_message = "Failed to generate guide"
        raise

    await ledger.record_usage(
        user_id,
        UsageAction.guide,
        result.usage,
        model=result.completion.model,
        metadata={"system": system, "device": device, "connection": connection, "category": category},
    )

    return _json(
        200,
        {
            "success": True,
            "guide": result.guide.to_wire() if result.guide is not None else None,
            "meta": {
                "model": result.completion.model,
                "modelTier": result.decision.model_tier.value,
                "taskType": result.decision.task_type.value,
                "usage": result.usage.as_wire(),
            },
        },
    )


@app.post("/v1/chat")
async def chat(body: ChatRequest, request: Request) -> JSONResponse:
    """Answer a maintenance question (free tier: daily cap)."""
    user_id: str = request.state.user_id
    message = (body.message or "").strip()
    if not message:
        raise InvalidRequestError("message is required")

    ledger = _ledger(request)
    await _enforce_quota(ledger, user_id, UsageAction.question)

    agent = ChatAgent(request.app.state.llm)
    try:
        result = await agent.process(ChatInput(message=message, conversation_history=body.conversation_history))
    except UpstreamError as e:
        e.public_message = "Failed to process message"
        raise

    await ledger.record_usage(
        user_id,
        UsageAction.question,
        result.usage,
        model=result.completion.model,
        metadata={"message_preview": message[:100]},
    )

    return _json(
        200,
        {
            "success": True,
            "response": result.content,
            "meta": {
                "model": result.completion.model,
                "modelTier": result.decision.model_tier.value,
                "taskType": result.decision.task_type.value,
                "reasoning": result.decision.reasoning,
                "usage": result.usage.as_wire(),
            },
        },
    )


@app.post("/v1/router")
async def route_request(body: RouterRequest, request: Request) -> JSONResponse:
    """Classify a free-form request (or honor `forceModel`) and run it with the caller's system prompt."""
    user_id: str = request.state.user_id
    user_message = (body.user_message or "").strip()
    if not user_message:
        raise InvalidRequestError("userMessage is required")

    force_model: ModelTier | None = None
    if body.force_model:
        try:
            force_model = ModelTier.parse(body.force_model)
        except ValueError:
            raise InvalidRequestError("forceModel must be one of: FAST, ADVANCED") from None

    agent = RouterAgent(request.app.state.llm)
    result = await agent.process(
        RouterInput(
            user_message=user_message,
            context=body.context,
            system_prompt=body.system_prompt,
            force_model=force_model,
        )
    )

    await _ledger(request).record_usage(
        user_id,
        UsageAction.routed,
        result.usage,
        model=result.completion.model,
        metadata={"taskType": result.decision.task_type.value},
    )

    return _json(
        200,
        {
            "success": True,
            "content": result.content,
            "model": result.completion.model,
            "modelTier": result.decision.model_tier.value,
            "taskType": result.decision.task_type.value,
            "reasoning": result.decision.reasoning,
            "usage": result.usage.as_wire(),
        },
    )


@app.get("/v1/usage")
async def usage_summary(request: Request) -> JSONResponse:
    """Current-month totals and remaining free-tier allowance for the caller."""
    user_id: str = request.state.user_id
    ledger = _ledger(request)
    tier = await ledger.resolve_tier(user_id)
    summary = await ledger.summary(user_id, tier)
    return _json(200, summary.model_dump(by_alias=True))


@app.get("/health")
async def health() -> JSONResponse:
    """Health check: verifies Mongo ping and, when rate limiting is on, Redis."""
    mongo_ok = True
    mongo_error: str | None = None
    try:
        await app.state.mongo.ping()
    except (PyMongoError, TimeoutError, OSError, ConnectionError, RuntimeError) as e:
        mongo_ok = False
        mongo_error = str(e)

    payload: dict[str, Any] = {"mongo": {"ok": mongo_ok, "error": mongo_error}}
    redis_ok = True
    limiter: RateLimiter | None = getattr(app.state, "rate_limiter", None)
    if limiter is not None:
        redis_error: str | None = None
        try:
            await limiter.ping()
        except (redis.exceptions.RedisError, TimeoutError, OSError, ConnectionError, RuntimeError) as e:
            redis_ok = False
            redis_error = str(e)
        payload["redis"] = {"ok": redis_ok, "error": redis_error}

    overall = "healthy" if mongo_ok and redis_ok else "degraded"
    payload["status"] = overall
    return _json(200 if overall == "healthy" else 503, payload)
