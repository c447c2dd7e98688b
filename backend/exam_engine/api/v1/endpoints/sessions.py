import logging

from fastapi import APIRouter, Depends

from exam_engine.api.deps import get_candidate, get_registry, get_session
from exam_engine.models.registry import SessionRegistry
from exam_engine.models.session import ExamSession
from exam_engine.schemas.requests import CodeRequest, EvaluateRequest, LanguageRequest, MCQAnswerRequest, RunRequest
from exam_engine.schemas.session import CandidateInfo


router = APIRouter(prefix="/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


def _state(session: ExamSession) -> dict:
    return session.state.model_dump(mode="json", by_alias=True)


@router.post("/{assessment_id}")
async def open_session(
    assessment_id: str,
    candidate: CandidateInfo = Depends(get_candidate),
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    session = await registry.open(assessment_id, candidate)
    return _state(session)


@router.get("/{assessment_id}")
async def get_state(session: ExamSession = Depends(get_session)) -> dict:
    return _state(session)


@router.post("/{assessment_id}/refresh")
async def refresh_session(session: ExamSession = Depends(get_session)) -> dict:
    await session.refresh()
    return _state(session)


@router.post("/{assessment_id}/mcq")
async def answer_mcq(body: MCQAnswerRequest, session: ExamSession = Depends(get_session)) -> dict:
    session.record_mcq(body.question_id, body.option)
    return _state(session)


@router.put("/{assessment_id}/code")
async def save_code(body: CodeRequest, session: ExamSession = Depends(get_session)) -> dict:
    session.record_code(body.question_id, body.language, body.source)
    return _state(session)


@router.put("/{assessment_id}/language")
async def select_language(body: LanguageRequest, session: ExamSession = Depends(get_session)) -> dict:
    session.select_language(body.question_id, body.language)
    return _state(session)


@router.post("/{assessment_id}/run")
async def run_code(body: RunRequest, session: ExamSession = Depends(get_session)) -> dict:
    result = await session.run_code(body.question_id, body.stdin)
    return result.model_dump(mode="json", by_alias=True)


@router.post("/{assessment_id}/evaluate")
async def evaluate_code(body: EvaluateRequest, session: ExamSession = Depends(get_session)) -> dict:
    report = await session.run_tests(body.question_id)
    return {
        **report.model_dump(mode="json", by_alias=True),
        "passedCount": report.passed_count,
    }


@router.post("/{assessment_id}/submit")
async def submit_session(session: ExamSession = Depends(get_session)) -> dict:
    record = await session.submit()
    if record is None:
        logger.info("Submit ignored, another submission in flight", extra={"assessment_id": session.assessment_id})
    return {
        "submitted": record is not None,
        "record": record.model_dump(mode="json", by_alias=True) if record else None,
        "state": _state(session),
    }
