import logging
from collections import Counter
from collections.abc import Callable

from exam_engine.core.collaborators import AssessmentSource, ResultsStore
from exam_engine.core.config import SessionPolicy
from exam_engine.core.errors import ValidationError
from exam_engine.core.judge0 import JudgeClient
from exam_engine.models.clock import Scheduler
from exam_engine.models.session import ExamSession
from exam_engine.models.timer_store import TimerPersistence
from exam_engine.schemas.session import CandidateInfo, Phase, SubmissionRecord


logger = logging.getLogger(__name__)

SessionKey = tuple[str, str]


class SessionRegistry:
    """Process-local home of the live sessions, one per candidate and assessment.

    Each session gets its own orchestrator, so a rate-limit latch set by one
    candidate never blocks another.
    """

    def __init__(
        self,
        *,
        authoring: AssessmentSource,
        judge: JudgeClient,
        results: ResultsStore,
        timer_store_factory: Callable[[str], TimerPersistence],
        scheduler: Scheduler,
        policy: SessionPolicy | None = None,
        use_server_time: bool = True,
    ) -> None:
        self._authoring = authoring
        self._judge = judge
        self._results = results
        self._timer_store_factory = timer_store_factory
        self._scheduler = scheduler
        self.policy = policy or SessionPolicy()
        self._use_server_time = use_server_time
        self._sessions: dict[SessionKey, ExamSession] = {}
        self._submitted: Counter[SessionKey] = Counter()

    def get(self, assessment_id: str, email: str) -> ExamSession | None:
        return self._sessions.get((email, assessment_id))

    def submitted_attempts(self, assessment_id: str, email: str) -> int:
        return self._submitted[(email, assessment_id)]

    async def open(self, assessment_id: str, candidate: CandidateInfo) -> ExamSession:
        key = (candidate.email, assessment_id)
        current = self._sessions.get(key)
        if current is not None and current.phase is not Phase.SUBMITTED:
            return current

        assessment = await self._authoring.get_assessment_with_questions(assessment_id)
        used = self._submitted[key]
        if assessment.max_attempts > 0 and used >= assessment.max_attempts:
            raise ValidationError(
                f"Maximum attempts reached ({used}/{assessment.max_attempts}) for this assessment"
            )

        def count_submission(record: SubmissionRecord) -> None:
            self._submitted[key] += 1

        session = ExamSession(
            assessment,
            judge=self._judge,
            results=self._results,
            timer_store=self._timer_store_factory(candidate.email),
            scheduler=self._scheduler,
            policy=self.policy,
            candidate=candidate,
            server_clock=self._authoring.fetch_server_time if self._use_server_time else None,
            on_submitted=count_submission,
        )
        self._sessions[key] = session
        await session.open()
        logger.info(
            "Session opened",
            extra={"assessment_id": assessment_id, "attempt": used + 1, "phase": session.phase.value},
        )
        return session

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
