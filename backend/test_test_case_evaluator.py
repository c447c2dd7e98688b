import asyncio

from conftest import FakeJudge, coding_payload
from exam_engine.core.errors import NetworkError, RateLimitedError
from exam_engine.models.execution import ExecutionOrchestrator
from exam_engine.models.grading import TestCaseEvaluator, outputs_match
from exam_engine.schemas.assessment import CodingQuestion

SUM_CODE = "import sys\nprint(sum(int(x) for x in sys.stdin.read().split()))"


def _evaluator(judge, scheduler):
    return TestCaseEvaluator(ExecutionOrchestrator(judge, scheduler), scheduler)


def _question(*cases):
    return CodingQuestion.model_validate(coding_payload(test_cases=cases))


def test_sum_program_passes_in_order(judge, scheduler):
    question = _question(("3\n4", "7"), ("0\n0", "0"))

    report = asyncio.run(_evaluator(judge, scheduler).evaluate(question, SUM_CODE, "python"))

    assert report.all_passed
    assert [r.status for r in report.results] == ["passed", "passed"]
    assert [r.input for r in report.results] == ["3\n4", "0\n0"]
    assert [r.actual_output for r in report.results] == ["7", "0"]
    assert [s.stdin for s in judge.submissions] == ["3\n4", "0\n0"]
    # one pause between the two cases, none before the first
    assert scheduler.sleeps == [1.0]


def test_no_test_cases_passes_vacuously(judge, scheduler):
    report = asyncio.run(_evaluator(judge, scheduler).evaluate(_question(), SUM_CODE, "python"))
    assert report.all_passed
    assert report.results == []
    assert judge.submissions == []


def test_wrong_output_fails(scheduler):
    judge = FakeJudge(program=lambda source, stdin: "8\n")
    question = _question(("3\n4", "7"), ("4\n4", "8"))

    report = asyncio.run(_evaluator(judge, scheduler).evaluate(question, SUM_CODE, "python"))

    assert not report.all_passed
    assert [r.passed for r in report.results] == [False, True]
    assert report.passed_count == 1


def test_only_trailing_whitespace_is_ignored():
    assert outputs_match("7\n", "7")
    assert outputs_match("7  \n\n", "7\n")
    assert outputs_match("1\n2\n", "1\n2")
    assert not outputs_match(" 7", "7")
    assert not outputs_match("1 \n2", "1\n2")
    assert not outputs_match("Seven", "seven")


def test_rate_limit_stops_the_run(judge, scheduler):
    # second case hits the limit on its first try and on the single retry
    judge.create_errors = [None, RateLimitedError(), RateLimitedError()]
    question = _question(("1 1", "2"), ("2 2", "4"), ("3 3", "6"))

    report = asyncio.run(_evaluator(judge, scheduler).evaluate(question, SUM_CODE, "python"))

    assert report.stopped_early
    assert not report.all_passed
    assert [r.status for r in report.results] == ["passed", "error", "not_run"]
    assert "Rate limit" in report.results[1].diagnostic
    assert len(judge.submissions) == 3
    assert [s.stdin for s in judge.submissions] == ["1 1", "2 2", "2 2"]


def test_other_errors_are_recorded_and_the_run_continues(judge, scheduler):
    judge.create_errors = [NetworkError("Could not reach the judge"), None]
    question = _question(("1 1", "2"), ("2 2", "4"))

    report = asyncio.run(_evaluator(judge, scheduler).evaluate(question, SUM_CODE, "python"))

    assert not report.stopped_early
    assert [r.status for r in report.results] == ["error", "passed"]
    assert report.results[0].diagnostic == "Could not reach the judge"


def test_compile_errors_become_diagnostics(scheduler):
    class BrokenJudge(FakeJudge):
        async def get_submission(self, token):
            result = await super().get_submission(token)
            return result.model_copy(
                update={"status_id": 6, "status_description": "Compilation Error", "stdout": "", "compile_output": "error: ';' expected"}
            )

    judge = BrokenJudge()
    question = _question(("1 1", "2"))

    report = asyncio.run(_evaluator(judge, scheduler).evaluate(question, "class A {", "java"))

    assert report.results[0].status == "failed"
    assert report.results[0].diagnostic == "error: ';' expected"
