from typing import Any, Awaitable, Callable, Optional, TypeVar
import asyncio

from pydantic import BaseModel, Field
import structlog

from persona_agent.domain.errors import RetryExhaustedError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff shared by the structured generators.

    A result of None or a raised exception counts as a failed attempt. With
    max_attempts left as None the loop keeps going until a usable result
    arrives.
    """

    initial_delay: float = Field(default=1.0, description="Seconds before the first retry")
    multiplier: float = Field(default=2.0, description="Factor applied to the delay after each retry")
    max_attempts: Optional[int] = Field(default=None, description="None retries without limit")
    sleep: Callable[[float], Awaitable[Any]] = Field(default=asyncio.sleep, exclude=True)

    async def run(self, attempt_fn: Callable[[], Awaitable[Optional[T]]], label: str) -> T:
        """Call attempt_fn until it yields a non-None result"""

        delay = self.initial_delay
        attempts = 0

        while True:
            attempts += 1
            try:
                result = await attempt_fn()
                if result is not None:
                    return result
                logger.info("Generation returned no usable result", label=label, attempt=attempts)
            except Exception as e:
                logger.error("Generation attempt failed", label=label, attempt=attempts, error=str(e))

            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise RetryExhaustedError(label, attempts)

            logger.info("Retrying generation", label=label, delay=delay)
            await self.sleep(delay)
            delay *= self.multiplier
