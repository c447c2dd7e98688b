"""
Clients for the two services around the engine: the authoring service that
serves assessment definitions and the results service that stores submissions.
"""

import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from exam_engine.core.errors import NetworkError, RateLimitedError, ValidationError
from exam_engine.schemas.assessment import UTC, AssessmentDefinition
from exam_engine.schemas.session import SubmissionRecord


logger = logging.getLogger(__name__)


class ResultsStore(Protocol):
    async def save_result(self, record: SubmissionRecord) -> str: ...


class AssessmentSource(Protocol):
    async def get_assessment_with_questions(self, assessment_id: str) -> AssessmentDefinition: ...

    async def fetch_server_time(self) -> datetime | None: ...


class _ServiceClient:
    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        async with self._client() as client:
            try:
                resp = await client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                logger.warning(
                    "%s unreachable", self.service_name, extra={"path": path, "error": str(exc)}
                )
                raise NetworkError(f"Could not reach the {self.service_name}. Please try again.") from exc
        if resp.status_code == 429:
            raise RateLimitedError(f"The {self.service_name} is busy. Please try again shortly.")
        if resp.is_error:
            raise NetworkError(
                f"The {self.service_name} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp


class AuthoringClient(_ServiceClient):
    service_name = "assessment service"

    async def get_assessment_with_questions(self, assessment_id: str) -> AssessmentDefinition:
        if not assessment_id:
            raise ValidationError("Assessment ID is required")
        resp = await self._send("GET", f"/student-assessments/{assessment_id}/with-questions")
        try:
            body = resp.json()
        except ValueError as exc:
            raise NetworkError("The assessment service returned an invalid response") from exc
        if isinstance(body, dict) and body.get("success") is False:
            raise ValidationError(body.get("message") or "Failed to load assessment")
        try:
            definition = AssessmentDefinition.model_validate(body)
        except PydanticValidationError as exc:
            logger.warning("Malformed assessment definition", extra={"assessment_id": assessment_id})
            raise ValidationError(f"Assessment {assessment_id} could not be read: {exc.error_count()} errors") from exc
        if not definition.assessment_id:
            definition = definition.model_copy(update={"assessment_id": assessment_id})
        logger.info(
            "Assessment loaded",
            extra={"assessment_id": assessment_id, "questions": len(definition.questions)},
        )
        return definition

    async def fetch_server_time(self) -> datetime | None:
        """Best-effort server clock from the `Date` response header."""
        # any HTTP answer carries a usable Date header, so the status is not checked
        async with self._client() as client:
            try:
                resp = await client.head("/")
            except httpx.HTTPError:
                logger.info("Server time unavailable, using local clock")
                return None
        header = resp.headers.get("date")
        if not header:
            return None
        try:
            return parsedate_to_datetime(header).astimezone(UTC)
        except (TypeError, ValueError):
            logger.info("Unparseable Date header", extra={"date": header})
            return None


class ResultsClient(_ServiceClient):
    service_name = "results service"

    async def save_result(self, record: SubmissionRecord) -> str:
        payload = {
            "assessmentId": record.assessment_id,
            "attemptId": record.attempt_id,
            "email": record.email,
            "Name": record.name,
            "department": record.department,
            "answers": [answer.model_dump(by_alias=True) for answer in record.answers],
            "score": record.score,
            "maxScore": record.max_score,
            "percentage": record.percentage,
            "accuracy": record.accuracy,
            "numCorrect": record.num_correct,
            "numIncorrect": record.num_incorrect,
            "numUnattempted": record.num_unattempted,
            "entity_marks": record.entity_marks,
            "timeSpentSeconds": record.time_spent_seconds,
            "submittedAt": record.submitted_at.isoformat(),
            "trigger": record.trigger.value,
        }
        if record.passing_score is not None:
            payload["passingScore"] = record.passing_score
            payload["passed"] = record.passed
        resp = await self._send(
            "POST",
            "/student/submit-assessment",
            json=payload,
            headers={"Idempotency-Key": record.attempt_id},
        )
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success") is False:
            raise NetworkError(body.get("message") or "Failed to submit assessment")
        data = body.get("data") if isinstance(body, dict) else None
        result_id = None
        if isinstance(data, dict):
            result_id = data.get("id") or data.get("_id")
        if result_id is None and isinstance(body, dict):
            result_id = body.get("id") or body.get("_id")
        logger.info(
            "Submission stored",
            extra={"assessment_id": record.assessment_id, "attempt_id": record.attempt_id},
        )
        return str(result_id) if result_id is not None else record.attempt_id
