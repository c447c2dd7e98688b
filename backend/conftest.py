"""
Shared fakes and builders for the engine tests.

Everything runs against `VirtualScheduler`, so a full attempt (an hour of
countdown included) replays instantly and deterministically.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from exam_engine.core.config import SessionPolicy
from exam_engine.core.errors import NetworkError
from exam_engine.models.clock import VirtualScheduler
from exam_engine.models.session import ExamSession
from exam_engine.models.timer_store import InMemoryTimerPersistence
from exam_engine.schemas.assessment import UTC, AssessmentDefinition
from exam_engine.schemas.session import ExecutionRequest, ExecutionResult


T0 = datetime(2025, 1, 1, tzinfo=UTC)

# manual submit is accepted immediately; everything else keeps production values
OPEN_POLICY = SessionPolicy(submit_unlock_minutes=0)


def sum_program(source: str, stdin: str) -> str:
    return f"{sum(int(token) for token in stdin.split())}\n"


class FakeJudge:
    """Scripted judge.

    `program(source, stdin)` produces stdout. Each submission reports
    "Processing" for `pending_polls` polls before finishing with `status_id`.
    Entries of `create_errors` are consumed one per submission; an exception
    entry is raised, None lets that submission through.
    """

    def __init__(
        self,
        program: Callable[[str, str], str] = sum_program,
        pending_polls: int = 0,
        status_id: int = 3,
    ) -> None:
        self.program = program
        self.pending_polls = pending_polls
        self.status_id = status_id
        self.create_errors: list[Exception | None] = []
        self.submissions: list[ExecutionRequest] = []
        self.polls: list[str] = []
        self._pending: dict[str, int] = {}
        self._requests: dict[str, ExecutionRequest] = {}

    async def create_submission(self, request: ExecutionRequest) -> str:
        self.submissions.append(request)
        if self.create_errors:
            error = self.create_errors.pop(0)
            if error is not None:
                raise error
        token = f"tok-{len(self.submissions)}"
        self._pending[token] = self.pending_polls
        self._requests[token] = request
        return token

    async def get_submission(self, token: str) -> ExecutionResult:
        self.polls.append(token)
        if self._pending[token] > 0:
            self._pending[token] -= 1
            return ExecutionResult(status_id=2, status_description="Processing", token=token)
        request = self._requests[token]
        return ExecutionResult(
            status_id=self.status_id,
            status_description="Accepted" if self.status_id == 3 else "Wrong Answer",
            stdout=self.program(request.source_code, request.stdin),
            token=token,
        )


class FakeResultsStore:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0
        self.records = []

    async def save_result(self, record) -> str:
        self.calls += 1
        # yield once so racing submissions interleave
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise NetworkError("Results service unavailable")
        self.records.append(record)
        return f"result-{len(self.records)}"


class FakeAuthoring:
    def __init__(self, *assessments: AssessmentDefinition) -> None:
        self.assessments = {a.assessment_id: a for a in assessments}
        self.fetches = 0

    async def get_assessment_with_questions(self, assessment_id: str) -> AssessmentDefinition:
        self.fetches += 1
        if assessment_id not in self.assessments:
            raise NetworkError("The assessment service returned HTTP 404", status_code=404)
        return self.assessments[assessment_id]

    async def fetch_server_time(self) -> datetime | None:
        return None


def mcq_payload(question_id="m1", points=1, correct="B", options=("Red", "Green", "Blue", "Black")) -> dict:
    return {
        "entityType": "mcq",
        "questionId": question_id,
        "question": f"Question {question_id}",
        "options": list(options),
        "correctAnswer": correct,
        "points": points,
    }


def coding_payload(question_id="c1", points=1, test_cases=(("3\n4", "7"), ("0\n0", "0")), examples=()) -> dict:
    return {
        "entityType": "coding",
        "questionId": question_id,
        "title": "Sum",
        "description": "Print the sum of the integers on stdin.",
        "starterCode": "",
        "testCases": [{"input": i, "expectedOutput": o} for i, o in test_cases],
        "examples": [{"input": i, "output": o} for i, o in examples],
        "points": points,
    }


def make_assessment(
    questions=None,
    duration: int | None = 60,
    start: datetime | None = None,
    end: datetime | None = None,
    assessment_id: str = "asmt-1",
    **extra,
) -> AssessmentDefinition:
    payload = {
        "assessmentId": assessment_id,
        "title": "Sample assessment",
        "questions": questions if questions is not None else [mcq_payload(), coding_payload()],
        "configuration": {"duration": duration},
        **extra,
    }
    if start is not None or end is not None:
        payload["scheduling"] = {
            "startDate": start.isoformat() if start else None,
            "endDate": end.isoformat() if end else None,
        }
    return AssessmentDefinition.model_validate(payload)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler(start=T0)


@pytest.fixture
def judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def results() -> FakeResultsStore:
    return FakeResultsStore()


@pytest.fixture
def timer_store(scheduler) -> InMemoryTimerPersistence:
    return InMemoryTimerPersistence(now=scheduler.now)


@pytest.fixture
def make_session(scheduler, judge, results, timer_store):
    def build(assessment=None, policy=OPEN_POLICY, **overrides) -> ExamSession:
        options = {
            "judge": judge,
            "results": results,
            "timer_store": timer_store,
            "scheduler": scheduler,
            **overrides,
        }
        return ExamSession(
            assessment if assessment is not None else make_assessment(),
            policy=policy,
            **options,
        )

    return build
