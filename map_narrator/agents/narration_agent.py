# map_narrator/agents/narration_agent.py

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Optional, Set, Tuple

from map_narrator.core.config import Settings
from map_narrator.core.errors import (
    LLMError,
    NarrationTimeoutError,
    NarrationValidationError,
)
from map_narrator.core.logging_config import logger
from map_narrator.models.schemas import NarrationOutput
from map_narrator.services.llm_client import LLMClient
from map_narrator.services.narration_schema import (
    JSONExtractionError,
    extract_json,
    validate_narration,
)


@dataclass(frozen=True)
class AttemptState:
    """Retry bookkeeping, replaced (never mutated) between attempts."""

    attempt: int = 0
    issues: Tuple[str, ...] = ()
    validation_failures: int = 0
    last_error: Optional[Exception] = None


class NarrationAgent:
    """
    Structured generation with validation and bounded retries.

    Each attempt: call model -> extract JSON -> schema validate ->
    (allowed-name validate) -> accept or retry after `retry_delay_ms`.
    """

    def __init__(self, settings: Settings, llm: Optional[LLMClient] = None) -> None:
        self.settings = settings
        self.llm = llm or LLMClient(settings)

    async def generate(
        self,
        prompt: str,
        allowed_names: Optional[Set[str]] = None,
        attraction_count: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> NarrationOutput:
        """
        `deadline` is an absolute `time.monotonic()` value for the whole
        request; no attempt starts after it and a running attempt is cut
        off at it.
        """
        max_retries = self.settings.LLM_MAX_RETRIES if max_retries is None else max_retries
        retry_delay_ms = self.settings.LLM_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
        max_retries = max(1, max_retries)

        state = AttemptState()
        while state.attempt < max_retries:
            state = replace(state, attempt=state.attempt + 1)
            logger.info(f"NarrationAgent: attempt {state.attempt}/{max_retries}")

            output, state = await self._attempt(prompt, allowed_names, attraction_count, state, deadline)
            if output is not None:
                logger.info(f"NarrationAgent: accepted on attempt {state.attempt}")
                return output

            if state.attempt < max_retries:
                await self._sleep(retry_delay_ms / 1000, deadline)

        logger.error(f"NarrationAgent: giving up after {state.attempt} attempt(s)")
        if state.validation_failures == 0 and state.last_error is not None:
            raise state.last_error
        raise NarrationValidationError(state.issues, state.attempt)

    async def _attempt(
        self,
        prompt: str,
        allowed_names: Optional[Set[str]],
        attraction_count: Optional[int],
        state: AttemptState,
        deadline: Optional[float],
    ) -> Tuple[Optional[NarrationOutput], AttemptState]:
        remaining = _remaining(deadline)
        if remaining is not None and remaining <= 0:
            raise NarrationTimeoutError("Request deadline passed before the model call")

        try:
            raw_text = await asyncio.wait_for(
                self.llm.generate_text(prompt, json_mode=True), timeout=remaining
            )
        except asyncio.TimeoutError as exc:
            raise NarrationTimeoutError("Request deadline passed during the model call") from exc
        except LLMError as exc:
            logger.warning(f"NarrationAgent: model call failed: {exc}")
            return None, replace(
                state,
                issues=state.issues + (f"attempt {state.attempt}: {exc}",),
                last_error=exc,
            )

        logger.info(f"NarrationAgent: raw response length {len(raw_text)}")

        try:
            parsed = extract_json(raw_text)
        except JSONExtractionError as exc:
            logger.warning(f"NarrationAgent: {exc}")
            return None, replace(
                state,
                issues=state.issues + (f"attempt {state.attempt}: {exc}",),
                validation_failures=state.validation_failures + 1,
                last_error=exc,
            )

        result = validate_narration(parsed, allowed_names, attraction_count)
        if result.success:
            return result.data, state

        logger.warning(f"NarrationAgent: validation failed: {result.issues}")
        return None, replace(
            state,
            issues=state.issues + tuple(f"attempt {state.attempt}: {issue}" for issue in result.issues),
            validation_failures=state.validation_failures + 1,
        )

    async def _sleep(self, seconds: float, deadline: Optional[float]) -> None:
        remaining = _remaining(deadline)
        if remaining is not None:
            if remaining <= seconds:
                raise NarrationTimeoutError("Request deadline passed while waiting to retry")
        if seconds > 0:
            await asyncio.sleep(seconds)


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return deadline - time.monotonic()
