import asyncio
import logging
import uuid

from exam_engine.core.collaborators import ResultsStore
from exam_engine.core.errors import ValidationError, describe_error
from exam_engine.models.clock import Scheduler
from exam_engine.models.grading import build_submission_record
from exam_engine.models.ledger import AnswerLedger
from exam_engine.models.timer import SessionClock
from exam_engine.models.timer_store import TimerPersistence
from exam_engine.schemas.assessment import AssessmentDefinition
from exam_engine.schemas.session import CandidateInfo, SubmissionRecord, SubmissionStatus, SubmitTrigger


logger = logging.getLogger(__name__)


class SubmissionCoordinator:
    """Finalizes an attempt exactly once.

    Every submission path (manual click, clock expiry, schedule end) goes through
    `submit`, whose status check is the single exactly-once guard. The status is
    flipped to SUBMITTING before the first await, so under cooperative scheduling a
    racing second call always sees it. A failed persistence call puts the status
    back to IDLE so the same entry point can be retried.
    """

    def __init__(
        self,
        assessment: AssessmentDefinition,
        ledger: AnswerLedger,
        clock: SessionClock,
        results: ResultsStore,
        timer_store: TimerPersistence,
        scheduler: Scheduler,
        candidate: CandidateInfo | None = None,
        default_duration_seconds: int = 3600,
    ) -> None:
        self._assessment = assessment
        self._ledger = ledger
        self._clock = clock
        self._results = results
        self._timer_store = timer_store
        self._scheduler = scheduler
        self._candidate = candidate or CandidateInfo()
        self._default_duration_seconds = default_duration_seconds
        # one key per attempt so the results service can drop a replayed request
        self.attempt_id = str(uuid.uuid4())
        self._status = SubmissionStatus.IDLE
        self._record: SubmissionRecord | None = None
        self.result_id: str | None = None
        self.last_error: str | None = None

    @property
    def status(self) -> SubmissionStatus:
        return self._status

    @property
    def record(self) -> SubmissionRecord | None:
        return self._record

    async def submit(self, trigger: SubmitTrigger) -> SubmissionRecord | None:
        """Returns the stored record, or None when another submission is in flight."""
        if self._status is SubmissionStatus.SUBMITTED:
            return self._record
        if self._status is SubmissionStatus.SUBMITTING:
            logger.info(
                "Submission already in progress",
                extra={"assessment_id": self._assessment.assessment_id, "trigger": trigger.value},
            )
            return None
        self._status = SubmissionStatus.SUBMITTING

        snapshot = self._ledger.snapshot()
        time_left = self._clock.time_left_seconds
        self._clock.stop()

        try:
            if not self._assessment.assessment_id:
                raise ValidationError("Assessment ID is missing. Cannot submit.")
            record = build_submission_record(
                self._assessment,
                snapshot,
                trigger=trigger,
                time_left_seconds=time_left,
                submitted_at=self._scheduler.now(),
                candidate=self._candidate,
                attempt_id=self.attempt_id,
                default_duration_seconds=self._default_duration_seconds,
            )
            result_id = await self._results.save_result(record)
        except asyncio.CancelledError:
            self._status = SubmissionStatus.IDLE
            self.last_error = "Submission was interrupted. Please submit again."
            raise
        except Exception as exc:
            self._status = SubmissionStatus.IDLE
            self.last_error = describe_error(exc)
            logger.warning(
                "Submission failed",
                extra={
                    "assessment_id": self._assessment.assessment_id,
                    "trigger": trigger.value,
                    "error": self.last_error,
                },
            )
            raise

        self._record = record
        self.result_id = result_id
        self.last_error = None
        self._ledger.freeze()
        self._status = SubmissionStatus.SUBMITTED
        try:
            await self._timer_store.clear(self._assessment.assessment_id)
        except Exception:
            # the result is stored; a leftover entry goes stale on its own
            logger.exception(
                "Failed to clear timer state",
                extra={"assessment_id": self._assessment.assessment_id},
            )
        logger.info(
            "Assessment submitted",
            extra={
                "assessment_id": self._assessment.assessment_id,
                "trigger": trigger.value,
                "score": record.score,
                "max_score": record.max_score,
            },
        )
        return record
