"""
The session controller: one object per attempt, owning the SessionState and
every component that acts on it.

Nothing outside this class changes the phase. The scheduling gate, the clock and
the submission coordinator only report to it; the phase moves forward only.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from exam_engine.core.collaborators import ResultsStore
from exam_engine.core.config import SessionPolicy
from exam_engine.core.errors import EngineError, ExecutionBusyError, ValidationError
from exam_engine.core.judge0 import JudgeClient, build_request, resolve_language_id
from exam_engine.models.clock import Scheduler, TimerHandle, format_time
from exam_engine.models.execution import ExecutionOrchestrator
from exam_engine.models.grading import TestCaseEvaluator
from exam_engine.models.ledger import AnswerLedger
from exam_engine.models.scheduling import SchedulingGate
from exam_engine.models.submission import SubmissionCoordinator
from exam_engine.models.timer import SessionClock, resolve_initial_seconds
from exam_engine.models.timer_store import TimerPersistence
from exam_engine.schemas.assessment import AssessmentDefinition, CodingQuestion, MCQQuestion
from exam_engine.schemas.session import (
    PHASE_ORDER,
    CandidateInfo,
    EvaluationReport,
    ExecutionOutcome,
    ExecutionResult,
    Phase,
    SessionState,
    SubmissionRecord,
    SubmissionStatus,
    SubmitTrigger,
)


logger = logging.getLogger(__name__)

ServerClock = Callable[[], Awaitable[datetime | None]]


class ExamSession:
    def __init__(
        self,
        assessment: AssessmentDefinition,
        *,
        judge: JudgeClient,
        results: ResultsStore,
        timer_store: TimerPersistence,
        scheduler: Scheduler,
        policy: SessionPolicy | None = None,
        candidate: CandidateInfo | None = None,
        server_clock: ServerClock | None = None,
        on_submitted: Callable[[SubmissionRecord], None] | None = None,
    ) -> None:
        self.assessment = assessment
        self.policy = policy or SessionPolicy()
        self.candidate = candidate or CandidateInfo()
        self._scheduler = scheduler
        self._timer_store = timer_store
        self._server_clock = server_clock
        self._on_submitted = on_submitted

        self._phase = Phase.NOT_STARTED
        self._opened = False
        self._activated = False
        self._gate = SchedulingGate(self.policy.start_tolerance_seconds)
        self._ledger = AnswerLedger()
        self._orchestrator = ExecutionOrchestrator(
            judge,
            scheduler,
            max_attempts=self.policy.judge_max_poll_attempts,
            poll_interval_ms=self.policy.judge_poll_interval_ms,
            rate_limit_backoff_seconds=self.policy.rate_limit_backoff_seconds,
        )
        self._evaluator = TestCaseEvaluator(
            self._orchestrator, scheduler, delay_seconds=self.policy.test_case_delay_seconds
        )
        self._clock = SessionClock(
            scheduler,
            timer_store,
            assessment.assessment_id,
            on_expired=self._on_clock_expired,
        )
        self._coordinator = SubmissionCoordinator(
            assessment,
            self._ledger,
            self._clock,
            results,
            timer_store,
            scheduler,
            candidate=self.candidate,
            default_duration_seconds=self.policy.default_duration_seconds,
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._handles: dict[str, TimerHandle] = {}
        self._auto_retries = 0

    @property
    def assessment_id(self) -> str:
        return self.assessment.assessment_id

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def orchestrator(self) -> ExecutionOrchestrator:
        return self._orchestrator

    @property
    def coordinator(self) -> SubmissionCoordinator:
        return self._coordinator

    # lifecycle

    async def open(self) -> SessionState:
        if self._opened:
            return self.state
        self._opened = True
        now = await self._confirmed_now()
        phase = self._gate.evaluate(now, self.assessment.scheduling)
        logger.info(
            "Opening session",
            extra={"assessment_id": self.assessment_id, "gate": phase.value},
        )
        if phase is Phase.ACTIVE:
            await self._activate(now)
        elif phase is Phase.NOT_STARTED:
            delay = self._gate.seconds_until_open(now, self.assessment.scheduling)
            self._handles["activation"] = self._scheduler.call_later(delay, self.refresh)
        else:
            # the window closed before this attempt began; nothing to submit
            self._advance(Phase.ENDED)
        if self._phase is not Phase.SUBMITTED and self.policy.clock_check_interval_seconds > 0:
            self._handles["clock_check"] = self._scheduler.call_every(
                self.policy.clock_check_interval_seconds, self._periodic_check
            )
        return self.state

    async def refresh(self) -> SessionState:
        """Re-evaluate the scheduling gate and act on any boundary crossed since the last look."""
        if self._phase is Phase.SUBMITTED:
            return self.state
        now = await self._confirmed_now()
        gate = self._gate.evaluate(now, self.assessment.scheduling)
        if self._phase is Phase.NOT_STARTED:
            if gate is Phase.ACTIVE:
                await self._activate(now)
            elif gate is Phase.ENDED:
                self._advance(Phase.ENDED)
            else:
                # local and server clocks disagree; look again when the server says it opens
                delay = self._gate.seconds_until_open(now, self.assessment.scheduling)
                self._handles["activation"] = self._scheduler.call_later(delay, self.refresh)
        elif self._phase is Phase.ACTIVE and gate is Phase.ENDED:
            await self._auto_submit(SubmitTrigger.SCHEDULE_END)
        return self.state

    def close(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._clock.stop()

    async def _activate(self, now: datetime) -> None:
        if self._phase is not Phase.NOT_STARTED:
            return
        try:
            persisted = await self._timer_store.load(self.assessment_id)
        except Exception:
            logger.exception("Failed to load timer state", extra={"assessment_id": self.assessment_id})
            persisted = None
        initial = resolve_initial_seconds(
            now,
            persisted,
            self.assessment.duration,
            self.assessment.scheduling,
            default_seconds=self.policy.default_duration_seconds,
        )
        self._activated = True
        self._advance(Phase.ACTIVE)
        until_end = self._gate.seconds_until_end(now, self.assessment.scheduling)
        if until_end is not None:
            self._handles["schedule_end"] = self._scheduler.call_later(until_end, self.refresh)
        logger.info(
            "Session active",
            extra={
                "assessment_id": self.assessment_id,
                "time_left_seconds": initial,
                "resumed": persisted is not None,
            },
        )
        await self._clock.start(initial)

    async def _periodic_check(self) -> None:
        await self.refresh()

    async def _confirmed_now(self) -> datetime:
        if self._server_clock is not None:
            server_now = await self._server_clock()
            if server_now is not None:
                return server_now
            logger.info("Falling back to local clock", extra={"assessment_id": self.assessment_id})
        return self._scheduler.now()

    def _advance(self, phase: Phase) -> bool:
        if PHASE_ORDER[phase] <= PHASE_ORDER[self._phase]:
            return False
        logger.debug(
            "Phase change",
            extra={"assessment_id": self.assessment_id, "from": self._phase.value, "to": phase.value},
        )
        self._phase = phase
        return True

    # answers

    def _ensure_active(self) -> None:
        if self._phase is Phase.NOT_STARTED:
            raise ValidationError("The assessment has not started yet")
        if self._phase is not Phase.ACTIVE:
            raise ValidationError("The assessment is no longer accepting answers")

    def _mcq(self, question_id: str) -> MCQQuestion:
        question = self.assessment.get_question(question_id)
        if not isinstance(question, MCQQuestion):
            raise ValidationError(f"No multiple-choice question {question_id}")
        return question

    def _coding(self, question_id: str) -> CodingQuestion:
        question = self.assessment.get_question(question_id)
        if not isinstance(question, CodingQuestion):
            raise ValidationError(f"No coding question {question_id}")
        return question

    def record_mcq(self, question_id: str, option: int | str) -> None:
        self._ensure_active()
        question = self._mcq(question_id)
        index = question.option_index(option)
        if index is None:
            raise ValidationError(f"Question {question_id} has no option {option}")
        self._ledger.record_mcq(question_id, index)

    def record_code(self, question_id: str, language: str, source: str) -> None:
        self._ensure_active()
        self._coding(question_id)
        resolve_language_id(language)
        self._ledger.record_code(question_id, language.strip().lower(), source)

    def select_language(self, question_id: str, language: str) -> None:
        self._ensure_active()
        self._coding(question_id)
        resolve_language_id(language)
        self._ledger.select_language(question_id, language.strip().lower())

    def _current_code(self, question_id: str) -> tuple[str, str]:
        source = self._ledger.current_source(question_id)
        language = self._ledger.current_language(question_id)
        if language is None or not source.strip():
            raise ValidationError("Please enter some code before running.")
        return source, language

    @asynccontextmanager
    async def _exclusive(self, question_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(question_id, asyncio.Lock())
        if lock.locked():
            raise ExecutionBusyError(question_id)
        async with lock:
            yield

    async def run_code(self, question_id: str, stdin: str | None = None) -> ExecutionResult:
        """One ungraded run against the first example input, or the given stdin."""
        self._ensure_active()
        question = self._coding(question_id)
        source, language = self._current_code(question_id)
        if stdin is None:
            if question.examples:
                stdin = question.examples[0].input
            elif question.test_cases:
                stdin = question.test_cases[0].input
            else:
                stdin = ""
        async with self._exclusive(question_id):
            return await self._orchestrator.run(build_request(source, language, stdin))

    async def run_tests(self, question_id: str) -> EvaluationReport:
        self._ensure_active()
        question = self._coding(question_id)
        source, language = self._current_code(question_id)
        async with self._exclusive(question_id):
            try:
                report = await self._evaluator.evaluate(question, source, language)
            except EngineError as exc:
                self._ledger.record_execution_outcome(
                    question_id,
                    ExecutionOutcome(success=False, language=language, diagnostic=exc.message),
                )
                raise
        diagnostic = next((r.diagnostic for r in report.results if not r.passed and r.diagnostic), "")
        self._ledger.record_execution_outcome(
            question_id,
            ExecutionOutcome(
                success=report.all_passed,
                test_results=report.results,
                language=language,
                diagnostic=diagnostic,
            ),
        )
        return report

    # submission

    def _budget_seconds(self) -> int:
        if self.assessment.duration is not None and self.assessment.duration > 0:
            return self.assessment.duration * 60
        return self.policy.default_duration_seconds

    @property
    def seconds_until_submit_unlocked(self) -> int:
        if self._phase is not Phase.ACTIVE:
            return 0
        unlock_minutes = self.policy.submit_unlock_minutes
        if self.assessment.duration is not None and self.assessment.duration > 0:
            unlock_minutes = min(unlock_minutes, self.assessment.duration)
        spent = self._budget_seconds() - self._clock.time_left_seconds
        return max(0, unlock_minutes * 60 - spent)

    @property
    def can_submit_manually(self) -> bool:
        return (
            self._activated
            and self._phase in (Phase.ACTIVE, Phase.ENDED)
            and self._coordinator.status is SubmissionStatus.IDLE
            and self.seconds_until_submit_unlocked == 0
        )

    async def submit(self, trigger: SubmitTrigger = SubmitTrigger.MANUAL) -> SubmissionRecord | None:
        if trigger is SubmitTrigger.MANUAL:
            if self._phase is Phase.NOT_STARTED:
                raise ValidationError("The assessment has not started yet")
            if not self._activated:
                raise ValidationError("The assessment window closed before this attempt started")
            wait = self.seconds_until_submit_unlocked
            if wait > 0:
                raise ValidationError(f"Submission opens in {wait} seconds")
        try:
            record = await self._coordinator.submit(trigger)
        except EngineError:
            if trigger is not SubmitTrigger.MANUAL:
                self._advance(Phase.ENDED)
                self._schedule_auto_retry(trigger)
            elif self._phase is Phase.ACTIVE:
                await self._clock.start(self._clock.time_left_seconds)
            raise
        if self._coordinator.status is SubmissionStatus.SUBMITTED and self._advance(Phase.SUBMITTED):
            self.close()
            if self._on_submitted is not None:
                self._on_submitted(record)
        return record

    async def _on_clock_expired(self) -> None:
        await self._auto_submit(SubmitTrigger.TIMER_EXPIRY)

    async def _auto_submit(self, trigger: SubmitTrigger) -> None:
        try:
            await self.submit(trigger)
        except EngineError as exc:
            logger.warning(
                "Automatic submission failed",
                extra={
                    "assessment_id": self.assessment_id,
                    "trigger": trigger.value,
                    "retries": self._auto_retries,
                    "error": exc.message,
                },
            )

    def _schedule_auto_retry(self, trigger: SubmitTrigger) -> None:
        if self._auto_retries >= self.policy.submit_auto_retry_limit:
            logger.error(
                "Giving up on automatic submission, waiting for the candidate",
                extra={"assessment_id": self.assessment_id, "trigger": trigger.value},
            )
            return
        self._auto_retries += 1

        async def retry() -> None:
            await self._auto_submit(trigger)

        self._handles["auto_retry"] = self._scheduler.call_later(self.policy.submit_auto_retry_seconds, retry)

    # view

    @property
    def state(self) -> SessionState:
        snapshot = self._ledger.snapshot()
        time_left = self._clock.time_left_seconds
        seconds_until_start = None
        if self._phase is Phase.NOT_STARTED:
            seconds_until_start = self._gate.seconds_until_start(
                self._scheduler.now(), self.assessment.scheduling
            )
        return SessionState(
            assessment_id=self.assessment_id,
            phase=self._phase,
            time_left_seconds=time_left,
            time_left_display=format_time(time_left),
            mcq_answers=snapshot.mcq_answers,
            code_by_question_and_language=snapshot.code_by_question_and_language,
            selected_language=snapshot.selected_language,
            execution_outcome=snapshot.execution_outcome,
            submission_status=self._coordinator.status,
            submission_error=self._coordinator.last_error,
            result_id=self._coordinator.result_id,
            time_warning=self._phase is Phase.ACTIVE and time_left < self.policy.low_time_warning_seconds,
            can_submit_manually=self.can_submit_manually,
            seconds_until_submit_unlocked=self.seconds_until_submit_unlocked,
            seconds_until_start=seconds_until_start,
        )
