import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv
from loguru import logger

load_dotenv()

DEFAULT_ALLOWED_ORIGINS = (
    "chrome-extension://",
    "moz-extension://",
    "localhost",
    "127.0.0.1",
)


def _number_env(name: str, default, cast):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using default {default}")
        return default


def _int_env(name: str, default: int) -> int:
    return _number_env(name, default, int)


def _float_env(name: str, default: float) -> float:
    return _number_env(name, default, float)


def _origins_env(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return DEFAULT_ALLOWED_ORIGINS
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    llm_provider: str = "openai"
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "gemma3:latest"
    llm_timeout: float = 30.0
    llm_max_tokens: int = 2000
    llm_temperature: float = 0.1

    redis_url: Optional[str] = None
    kv_rest_api_url: Optional[str] = None
    kv_rest_api_token: Optional[str] = None
    rate_limit_max_requests: int = 10
    rate_limit_window_ms: int = 60000
    rate_limit_key_prefix: str = "periksakata:rl:"
    rate_limit_store_timeout: float = 2.0

    max_text_length: int = 12000
    max_suggestions: int = 20
    allowed_origins: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_ORIGINS)

    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            llm_provider=(os.getenv("LLM_PROVIDER") or "openai").lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1",
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
            ollama_base_url=os.getenv("OLLAMA_BASE_URL") or "http://localhost:11434",
            ollama_model=os.getenv("OLLAMA_MODEL") or "gemma3:latest",
            llm_timeout=_float_env("LLM_TIMEOUT", 30.0),
            llm_max_tokens=_int_env("LLM_MAX_TOKENS", 2000),
            llm_temperature=_float_env("LLM_TEMPERATURE", 0.1),
            redis_url=os.getenv("REDIS_URL") or None,
            kv_rest_api_url=os.getenv("KV_REST_API_URL") or None,
            kv_rest_api_token=os.getenv("KV_REST_API_TOKEN") or None,
            rate_limit_max_requests=_int_env("RATE_LIMIT_MAX_REQUESTS", 10),
            rate_limit_window_ms=_int_env("RATE_LIMIT_WINDOW_MS", 60000),
            rate_limit_key_prefix=os.getenv("RATE_LIMIT_KEY_PREFIX") or "periksakata:rl:",
            rate_limit_store_timeout=_float_env("RATE_LIMIT_STORE_TIMEOUT", 2.0),
            max_text_length=_int_env("MAX_TEXT_LENGTH", 12000),
            max_suggestions=_int_env("MAX_SUGGESTIONS", 20),
            allowed_origins=_origins_env("ALLOWED_ORIGINS"),
            log_level=os.getenv("LOG_LEVEL") or "INFO",
            log_file=os.getenv("LOG_FILE") or None,
        )

    @property
    def model_name(self) -> str:
        if self.llm_provider == "ollama":
            return self.ollama_model
        return self.openai_model

    @property
    def rate_limit_backend(self) -> str:
        if self.redis_url:
            return "redis"
        if self.kv_rest_api_url and self.kv_rest_api_token:
            return "upstash"
        return "memory"
