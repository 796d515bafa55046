from typing import Any

from loguru import logger

from periksakata.config import Settings
from periksakata.errors import RateLimited, ServiceMisconfigured
from periksakata.fingerprint import text_fingerprint
from periksakata.llm_gateway import LLMGateway, TransportFailure
from periksakata.models import CheckMeta, CheckResponse
from periksakata.rate_limiter import AdmissionLimiter
from periksakata.reconcile import reconcile
from periksakata.validation import validate_request


class CheckService:
    """Runs one check: validate, admit, call the model, reconcile."""

    def __init__(self, settings: Settings, limiter: AdmissionLimiter, gateway: LLMGateway):
        self.settings = settings
        self.limiter = limiter
        self.gateway = gateway

    async def check(self, payload: Any, client_id: str) -> CheckResponse:
        if not self.gateway.configured:
            logger.error("LLM API key not configured")
            raise ServiceMisconfigured("API key not configured")

        request = validate_request(payload, self.settings.max_text_length)

        if not await self.limiter.allow(client_id):
            logger.info(f"Rate limit exceeded for client {client_id}")
            raise RateLimited()

        text = request.text
        fingerprint = text_fingerprint(text)
        logger.info(f"Checking text {fingerprint} ({len(text)} characters)")

        result = await self.gateway.check(text)
        if isinstance(result, TransportFailure):
            logger.error(f"LLM unavailable: {result.reason} (status={result.status_code})")
            llm_called, skipped_reason, suggestions = False, "api_error", []
        else:
            suggestions = reconcile(result.candidates, text, self.settings.max_suggestions)
            llm_called = True
            skipped_reason = "invalid_model_output" if result.degraded else None
            logger.info(
                f"LLM returned {len(result.candidates)} candidate(s), "
                f"{len(suggestions)} suggestion(s) kept"
            )

        return CheckResponse(
            textFingerprint=fingerprint,
            suggestions=suggestions,
            meta=CheckMeta(
                llmCalled=llm_called,
                skippedReason=skipped_reason,
                modelUsed=self.gateway.model,
                textLength=len(text),
                suggestionsCount=len(suggestions),
            ),
        )
