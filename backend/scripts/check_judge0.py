"""Manual smoke check against a real Judge0 instance (uses JUDGE0_* from the environment or .env)."""
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from exam_engine.core.config import SessionPolicy, settings
from exam_engine.core.errors import EngineError, ValidationError
from exam_engine.core.judge0 import Judge0Client, build_request, resolve_language_id
from exam_engine.models.clock import AsyncioScheduler
from exam_engine.models.execution import ExecutionOrchestrator
from exam_engine.models.grading import TestCaseEvaluator
from exam_engine.schemas.assessment import CodingQuestion

PASS = "\033[92mPASS\033[0m"
FAIL = "\033[91mFAIL\033[0m"

results = []


def check(label, ok, detail=""):
    results.append(ok)
    status = PASS if ok else FAIL
    print(f"  [{status}] {label}" + (f"  => {detail}" if detail else ""))


# ── 1. Environment / config ───────────────────────────────────────────────────
print("\n=== 1. Environment ===")
check("JUDGE0_API_URL set", bool(settings.JUDGE0_API_URL), settings.JUDGE0_API_URL)
key = settings.JUDGE0_API_KEY or ""
check("JUDGE0_API_KEY loaded (optional when self-hosted)", True, f"{key[:8]}..." if key else "none")


# ── 2. Language ID resolution ─────────────────────────────────────────────────
print("\n=== 2. Language ID resolution ===")
for lang, expected_id in [("python", 71), ("javascript", 63), ("java", 62), ("cpp", 54), ("csharp", 51)]:
    got = resolve_language_id(lang)
    check(f"resolve '{lang}' → {expected_id}", got == expected_id, f"got {got}")
try:
    resolve_language_id("brainfuck")
    check("unknown language rejected", False, "no error raised")
except ValidationError:
    check("unknown language rejected", True)


# ── 3. Execution and grading ──────────────────────────────────────────────────
async def main():
    policy = SessionPolicy.from_settings(settings)
    scheduler = AsyncioScheduler()
    judge = Judge0Client(
        settings.JUDGE0_API_URL,
        api_key=settings.JUDGE0_API_KEY,
        api_host=settings.JUDGE0_API_HOST,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    orchestrator = ExecutionOrchestrator(
        judge,
        scheduler,
        max_attempts=policy.judge_max_poll_attempts,
        poll_interval_ms=policy.judge_poll_interval_ms,
        rate_limit_backoff_seconds=policy.rate_limit_backoff_seconds,
    )

    print("\n=== 3. Single runs ===")
    try:
        r = await orchestrator.run(build_request('print("Hello, World!")', "python"))
        check("Python: hello world stdout", r.stdout.strip() == "Hello, World!", repr(r.stdout.strip()))

        r = await orchestrator.run(build_request("n = int(input()); print(n * 2)", "python", "5"))
        check("Python: stdin → stdout", r.stdout.strip() == "10", repr(r.stdout.strip()))

        r = await orchestrator.run(build_request("def broken(", "python"))
        check("Python: syntax error → diagnostic", bool(r.diagnostic), repr(r.diagnostic[:60]))

        java = "public class Solution { public static void main(String[] a) { System.out.println(7); } }"
        r = await orchestrator.run(build_request(java, "java"))
        check("Java: class renamed to Main", r.stdout.strip() == "7", repr(r.stdout.strip() or r.diagnostic[:60]))
    except EngineError as e:
        check("single runs", False, f"{e.kind.value}: {e.message}")

    print("\n=== 4. Test-case evaluation ===")
    question = CodingQuestion.model_validate({
        "questionId": "sum",
        "testCases": [
            {"input": "3\n4", "expectedOutput": "7"},
            {"input": "0\n0", "expectedOutput": "0"},
        ],
    })
    evaluator = TestCaseEvaluator(orchestrator, scheduler, delay_seconds=policy.test_case_delay_seconds)
    code = "import sys\nprint(sum(int(x) for x in sys.stdin.read().split()))"
    report = await evaluator.evaluate(question, code, "python")
    check("sum program passes every case", report.all_passed, f"{report.passed_count}/{len(report.results)}")
    check("rate limit not hit", not report.stopped_early)


asyncio.run(main())

print(f"\n{sum(results)}/{len(results)} checks passed")
sys.exit(0 if all(results) else 1)
