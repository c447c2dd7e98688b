from fastapi import APIRouter

from exam_engine.api.v1.endpoints.sessions import router as sessions_router


router = APIRouter()
router.include_router(sessions_router)
