from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from exam_engine.core.collaborators import AuthoringClient, ResultsClient
from exam_engine.core.config import SessionPolicy, settings
from exam_engine.core.database import AsyncSessionLocal
from exam_engine.core.judge0 import Judge0Client
from exam_engine.models.clock import AsyncioScheduler
from exam_engine.models.registry import SessionRegistry
from exam_engine.models.session import ExamSession
from exam_engine.models.timer_store import SqlTimerPersistence
from exam_engine.schemas.session import CandidateInfo


@lru_cache
def get_registry() -> SessionRegistry:
    policy = SessionPolicy.from_settings(settings)
    return SessionRegistry(
        authoring=AuthoringClient(settings.AUTHORING_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS),
        judge=Judge0Client(
            settings.JUDGE0_API_URL,
            api_key=settings.JUDGE0_API_KEY,
            api_host=settings.JUDGE0_API_HOST,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        ),
        results=ResultsClient(settings.RESULTS_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS),
        timer_store_factory=lambda namespace: SqlTimerPersistence(
            AsyncSessionLocal,
            namespace=namespace,
            stale_after_seconds=policy.timer_stale_after_seconds,
        ),
        scheduler=AsyncioScheduler(),
        policy=policy,
    )


async def get_candidate(
    x_candidate_email: str = Header(...),
    x_candidate_name: str = Header(""),
    x_candidate_department: str = Header(""),
) -> CandidateInfo:
    email = x_candidate_email.strip().lower()
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Candidate email required")
    return CandidateInfo(email=email, name=x_candidate_name.strip(), department=x_candidate_department.strip())


async def get_session(
    assessment_id: str,
    candidate: CandidateInfo = Depends(get_candidate),
    registry: SessionRegistry = Depends(get_registry),
) -> ExamSession:
    session = registry.get(assessment_id, candidate.email)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session
