import logging
import math
import uuid
from datetime import datetime

from exam_engine.core.errors import EngineError, RateLimitedError
from exam_engine.core.judge0 import build_request
from exam_engine.models.clock import Scheduler
from exam_engine.models.execution import ExecutionOrchestrator
from exam_engine.models.ledger import LedgerSnapshot
from exam_engine.schemas.assessment import AssessmentDefinition, CodingQuestion, MCQQuestion
from exam_engine.schemas.session import (
    CandidateInfo,
    EvaluationReport,
    QuestionResult,
    SubmissionRecord,
    SubmitTrigger,
    TestResult,
)


logger = logging.getLogger(__name__)


def outputs_match(actual: str, expected: str) -> bool:
    return actual.rstrip() == expected.rstrip()


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class TestCaseEvaluator:
    """Grades a coding answer by running every test case, one after the other."""

    __test__ = False

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        scheduler: Scheduler,
        delay_seconds: float = 1.0,
    ) -> None:
        self._orchestrator = orchestrator
        self._scheduler = scheduler
        self.delay_seconds = delay_seconds

    async def evaluate(self, question: CodingQuestion, code: str, language: str) -> EvaluationReport:
        template = build_request(code, language)
        cases = question.test_cases
        results: list[TestResult] = []
        stopped_early = False

        for index, case in enumerate(cases):
            if index > 0:
                await self._scheduler.sleep(self.delay_seconds)
            request = template.model_copy(update={"stdin": case.input})
            try:
                run = await self._orchestrator.run(request)
            except RateLimitedError as exc:
                results.append(
                    TestResult(
                        passed=False,
                        input=case.input,
                        expected_output=case.expected_output,
                        status="error",
                        diagnostic=exc.message,
                    )
                )
                results.extend(
                    TestResult(
                        passed=False,
                        input=rest.input,
                        expected_output=rest.expected_output,
                        status="not_run",
                    )
                    for rest in cases[index + 1:]
                )
                stopped_early = True
                logger.warning(
                    "Stopping test run on rate limit",
                    extra={"question_id": question.question_id, "completed": index},
                )
                break
            except EngineError as exc:
                results.append(
                    TestResult(
                        passed=False,
                        input=case.input,
                        expected_output=case.expected_output,
                        status="error",
                        diagnostic=exc.message,
                    )
                )
                continue

            passed = outputs_match(run.stdout, case.expected_output)
            results.append(
                TestResult(
                    passed=passed,
                    input=case.input,
                    expected_output=case.expected_output,
                    actual_output=run.stdout.rstrip(),
                    status="passed" if passed else "failed",
                    diagnostic=run.diagnostic,
                )
            )

        report = EvaluationReport(
            question_id=question.question_id,
            language=language,
            all_passed=all(result.passed for result in results),
            results=results,
            stopped_early=stopped_early,
        )
        logger.info(
            "Test cases evaluated",
            extra={
                "question_id": question.question_id,
                "passed": report.passed_count,
                "total": len(cases),
            },
        )
        return report


def grade_mcq(question: MCQQuestion, snapshot: LedgerSnapshot) -> QuestionResult:
    index = snapshot.mcq_answers.get(question.question_id)
    selected = question.option_id(index) if index is not None else None
    correct = question.is_correct(selected)
    return QuestionResult(
        question_id=question.question_id,
        kind="mcq",
        selected=selected,
        attempted=selected is not None,
        is_correct=correct,
        points=question.points,
        points_awarded=question.points if correct else 0,
    )


def grade_coding(question: CodingQuestion, snapshot: LedgerSnapshot) -> QuestionResult:
    # all-or-nothing on the last full test run; partial credit is a policy layered on top
    source = snapshot.current_source(question.question_id)
    attempted = snapshot.is_code_attempted(question.question_id)
    outcome = snapshot.execution_outcome.get(question.question_id)
    correct = attempted and outcome is not None and outcome.success
    return QuestionResult(
        question_id=question.question_id,
        kind="coding",
        selected=source if attempted else None,
        language=snapshot.selected_language.get(question.question_id),
        attempted=attempted,
        is_correct=correct,
        points=question.points,
        points_awarded=question.points if correct else 0,
        tests_passed=sum(1 for r in outcome.test_results if r.passed) if outcome else None,
        tests_total=len(outcome.test_results) if outcome else None,
    )


def build_submission_record(
    assessment: AssessmentDefinition,
    snapshot: LedgerSnapshot,
    *,
    trigger: SubmitTrigger,
    time_left_seconds: int,
    submitted_at: datetime,
    candidate: CandidateInfo | None = None,
    attempt_id: str | None = None,
    default_duration_seconds: int = 3600,
) -> SubmissionRecord:
    candidate = candidate or CandidateInfo()
    answers = [
        grade_mcq(question, snapshot) if isinstance(question, MCQQuestion) else grade_coding(question, snapshot)
        for question in assessment.questions
    ]

    score = sum(answer.points_awarded for answer in answers)
    max_score = assessment.max_score
    num_correct = sum(1 for answer in answers if answer.is_correct)
    num_unattempted = sum(1 for answer in answers if not answer.attempted)
    num_incorrect = len(answers) - num_correct - num_unattempted
    entity_marks = {"mcq": 0, "coding": 0}
    for answer in answers:
        entity_marks[answer.kind] += answer.points_awarded

    if assessment.duration is not None and assessment.duration > 0:
        budget_seconds = assessment.duration * 60
    else:
        budget_seconds = default_duration_seconds
    percentage = round_half_up(100 * score / max_score) if max_score else 0

    passed = None
    if assessment.passing_score is not None:
        passed = percentage >= assessment.passing_score

    return SubmissionRecord(
        assessment_id=assessment.assessment_id,
        attempt_id=attempt_id or str(uuid.uuid4()),
        trigger=trigger,
        email=candidate.email,
        name=candidate.name or candidate.email,
        department=candidate.department,
        answers=answers,
        score=score,
        max_score=max_score,
        percentage=percentage,
        accuracy=round_half_up(100 * num_correct / len(answers)) if answers else 0,
        num_correct=num_correct,
        num_incorrect=num_incorrect,
        num_unattempted=num_unattempted,
        entity_marks=entity_marks,
        time_spent_seconds=max(0, budget_seconds - time_left_seconds),
        submitted_at=submitted_at,
        passing_score=assessment.passing_score,
        passed=passed,
    )
