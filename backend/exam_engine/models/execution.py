import logging

from exam_engine.core.errors import JudgeTimeoutError, RateLimitedError
from exam_engine.core.judge0 import JudgeClient
from exam_engine.models.clock import Scheduler
from exam_engine.schemas.session import ExecutionRequest, ExecutionResult


logger = logging.getLogger(__name__)


class ExecutionOrchestrator:
    """Submits code to the judge and polls it to a terminal status.

    Holds one piece of state: the rate-limit latch. Once the judge answers 429
    every `submit` fails fast without touching the network until the latch is
    reset. A 429 raised during `run` itself is retried once after a fixed
    backoff; a latch left by an earlier call is not.
    Scope one instance per session so one candidate's quota trouble does not
    block another.
    """

    def __init__(
        self,
        judge: JudgeClient,
        scheduler: Scheduler,
        max_attempts: int = 10,
        poll_interval_ms: int = 500,
        rate_limit_backoff_seconds: float = 5.0,
    ) -> None:
        self._judge = judge
        self._scheduler = scheduler
        self.max_attempts = max_attempts
        self.poll_interval_ms = poll_interval_ms
        self.rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self._rate_limited = False

    @property
    def rate_limited(self) -> bool:
        return self._rate_limited

    def reset_rate_limit(self) -> None:
        self._rate_limited = False

    async def submit(self, request: ExecutionRequest) -> str:
        if self._rate_limited:
            raise RateLimitedError()
        try:
            return await self._judge.create_submission(request)
        except RateLimitedError:
            self._rate_limited = True
            raise

    async def poll(self, token: str) -> ExecutionResult:
        try:
            return await self._judge.get_submission(token)
        except RateLimitedError:
            self._rate_limited = True
            raise

    async def run(
        self,
        request: ExecutionRequest,
        max_attempts: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> ExecutionResult:
        if self._rate_limited:
            # latched by an earlier call; only an explicit reset reopens the judge
            raise RateLimitedError()
        try:
            return await self._run_once(request, max_attempts, poll_interval_ms)
        except RateLimitedError:
            logger.info(
                "Rate limit hit, retrying once",
                extra={"backoff_seconds": self.rate_limit_backoff_seconds},
            )
        await self._scheduler.sleep(self.rate_limit_backoff_seconds)
        self.reset_rate_limit()
        return await self._run_once(request, max_attempts, poll_interval_ms)

    async def _run_once(
        self,
        request: ExecutionRequest,
        max_attempts: int | None,
        poll_interval_ms: int | None,
    ) -> ExecutionResult:
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        interval = (poll_interval_ms if poll_interval_ms is not None else self.poll_interval_ms) / 1000
        token = await self.submit(request)
        for attempt in range(attempts):
            result = await self.poll(token)
            if result.is_finished:
                logger.debug(
                    "Execution completed",
                    extra={"token": token, "status_id": result.status_id, "attempt": attempt + 1},
                )
                return result
            await self._scheduler.sleep(interval)
        logger.warning("Execution timed out", extra={"token": token, "attempts": attempts})
        raise JudgeTimeoutError()
