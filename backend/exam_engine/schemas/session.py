from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from exam_engine.schemas.assessment import CamelModel


# Judge statuses 1 (In Queue) and 2 (Processing) are the only non-terminal ones.
IN_PROGRESS_MAX_STATUS = 2
STATUS_ACCEPTED = 3
STATUS_WRONG_ANSWER = 4


class Phase(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDED = "ended"
    SUBMITTED = "submitted"


PHASE_ORDER = {
    Phase.NOT_STARTED: 0,
    Phase.ACTIVE: 1,
    Phase.ENDED: 2,
    Phase.SUBMITTED: 3,
}


class SubmissionStatus(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class SubmitTrigger(str, Enum):
    MANUAL = "manual"
    TIMER_EXPIRY = "timer_expiry"
    SCHEDULE_END = "schedule_end"


class ExecutionRequest(CamelModel):
    source_code: str
    language_id: int
    stdin: str = ""


class ExecutionResult(CamelModel):
    status_id: int
    status_description: str = ""
    stdout: str = ""
    stderr: str = ""
    compile_output: str = ""
    message: str = ""
    time: str | None = None
    memory: int | None = None
    token: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status_id > IN_PROGRESS_MAX_STATUS

    @property
    def diagnostic(self) -> str:
        """Compiler/runtime text to show next to the question, empty when the run was clean."""
        text = self.compile_output or self.stderr or self.message
        if not text and self.status_id not in (STATUS_ACCEPTED, STATUS_WRONG_ANSWER):
            text = self.status_description
        return text


class TestResult(CamelModel):
    __test__ = False

    passed: bool
    input: str
    expected_output: str
    actual_output: str = ""
    status: Literal["passed", "failed", "error", "not_run"] = "failed"
    diagnostic: str = ""


class EvaluationReport(CamelModel):
    question_id: str
    language: str
    all_passed: bool
    results: list[TestResult] = Field(default_factory=list)
    stopped_early: bool = False

    @property
    def passed_count(self) -> int:
        return sum(1 for result in self.results if result.passed)


class ExecutionOutcome(CamelModel):
    success: bool
    test_results: list[TestResult] = Field(default_factory=list)
    language: str | None = None
    diagnostic: str = ""


class CandidateInfo(CamelModel):
    email: str = ""
    name: str = ""
    department: str = ""


class QuestionResult(CamelModel):
    question_id: str
    kind: Literal["mcq", "coding"]
    selected: str | None = None
    language: str | None = None
    attempted: bool
    is_correct: bool
    points: int
    points_awarded: int
    tests_passed: int | None = None
    tests_total: int | None = None


class SubmissionRecord(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    assessment_id: str
    attempt_id: str
    trigger: SubmitTrigger
    email: str = ""
    name: str = ""
    department: str = ""
    answers: list[QuestionResult] = Field(default_factory=list)
    score: int
    max_score: int
    percentage: int
    accuracy: int
    num_correct: int
    num_incorrect: int
    num_unattempted: int
    entity_marks: dict[str, int] = Field(default_factory=dict)
    time_spent_seconds: int
    submitted_at: datetime
    passing_score: float | None = None
    passed: bool | None = None


class SessionState(CamelModel):
    assessment_id: str
    phase: Phase
    time_left_seconds: int = Field(ge=0)
    time_left_display: str = "00:00"
    mcq_answers: dict[str, int] = Field(default_factory=dict)
    code_by_question_and_language: dict[str, dict[str, str]] = Field(default_factory=dict)
    selected_language: dict[str, str] = Field(default_factory=dict)
    execution_outcome: dict[str, ExecutionOutcome] = Field(default_factory=dict)
    submission_status: SubmissionStatus = SubmissionStatus.IDLE
    submission_error: str | None = None
    result_id: str | None = None
    time_warning: bool = False
    can_submit_manually: bool = False
    seconds_until_submit_unlocked: int = 0
    seconds_until_start: int | None = None
