import asyncio
import contextlib
import sys
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from periksakata.config import Settings
from periksakata.errors import InvalidRequest, PeriksaKataError
from periksakata.llm_gateway import LLMGateway
from periksakata.models import CheckResponse
from periksakata.rate_limiter import AdmissionLimiter, RedisCounterStore, UpstashCounterStore
from periksakata.service import CheckService

settings = Settings.from_env()


def setup_logger(settings: Settings) -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.log_level,
        colorize=True,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="100 MB",
            retention="10 days",
            compression="zip",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=settings.log_level,
        )


setup_logger(settings)

app = FastAPI(title="Periksa Kata API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

http_client: Optional[httpx.AsyncClient] = None
redis_client = None
service: Optional[CheckService] = None
sweeper: Optional[asyncio.Task] = None


def build_service(settings: Settings, client: httpx.AsyncClient, redis_client=None) -> CheckService:
    remote = None
    if redis_client is not None:
        remote = RedisCounterStore(redis_client)
    elif settings.kv_rest_api_url and settings.kv_rest_api_token:
        remote = UpstashCounterStore(client, settings.kv_rest_api_url, settings.kv_rest_api_token)
    limiter = AdmissionLimiter.from_settings(settings, remote)
    return CheckService(settings, limiter, LLMGateway(settings, client))


def get_service() -> CheckService:
    if service is None:
        raise RuntimeError("CheckService is not initialised; startup has not run")
    return service


def get_client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def is_allowed_origin(origin: str, allowed=None) -> bool:
    if not origin:
        return True
    for prefix in allowed or settings.allowed_origins:
        if prefix.endswith("://"):
            if origin.startswith(prefix):
                return True
        elif prefix in origin:
            return True
    return False


@app.exception_handler(PeriksaKataError)
async def periksakata_error_handler(request: Request, exc: PeriksaKataError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "message": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Error in check API: {exc!r}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "Terjadi kesalahan saat memproses permintaan"},
    )


@app.post("/check", response_model=CheckResponse)
async def check_text(request: Request, checker: CheckService = Depends(get_service)):
    origin = request.headers.get("origin") or request.headers.get("referer") or ""
    if not is_allowed_origin(origin):
        logger.warning(f"Request from unauthorized origin: {origin}")

    try:
        payload = await request.json()
    except ValueError:
        raise InvalidRequest("Request body is required") from None

    return await checker.check(payload, get_client_id(request))


@app.get("/healthz")
def healthz():
    return {
        "status": "ok",
        "provider": settings.llm_provider,
        "model": settings.model_name,
        "rateLimitBackend": settings.rate_limit_backend,
    }


@app.on_event("startup")
async def startup_event():
    global http_client, redis_client, service, sweeper
    http_client = httpx.AsyncClient(timeout=settings.llm_timeout)
    if settings.redis_url:
        redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.rate_limit_store_timeout,
            socket_timeout=settings.rate_limit_store_timeout,
        )
        try:
            await redis_client.ping()
            logger.info("Connected to Redis")
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Redis unreachable at startup, rate limit will fall back to in-memory: {e}")
    service = build_service(settings, http_client, redis_client)
    sweeper = asyncio.create_task(service.limiter.run_sweeper())
    logger.info(f"Periksa Kata API started (provider={settings.llm_provider}, model={settings.model_name})")


@app.on_event("shutdown")
async def shutdown_event():
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    if redis_client is not None:
        await redis_client.close()
    if http_client is not None:
        await http_client.aclose()
