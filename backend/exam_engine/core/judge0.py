import base64
import logging
import re
from typing import Protocol

import httpx

from exam_engine.core.errors import NetworkError, RateLimitedError, ValidationError
from exam_engine.schemas.session import ExecutionRequest, ExecutionResult


logger = logging.getLogger(__name__)

# Judge0 CE language IDs: https://ce.judge0.com/languages/
JUDGE0_LANGUAGE_IDS = {
    "python":     71,  # Python 3
    "python3":    71,
    "javascript": 63,  # Node.js
    "js":         63,
    "typescript": 74,
    "java":       62,
    "c":          50,  # C (GCC)
    "c++":        54,  # C++ (GCC)
    "cpp":        54,
    "go":         60,
    "rust":       73,
    "ruby":       72,
    "kotlin":     78,
    "swift":      83,
    "r":          80,
    "php":        68,
    "csharp":     51,
    "c#":         51,
}

LOW_QUOTA_THRESHOLD = 5
_PUBLIC_CLASS = re.compile(r"public\s+class\s+\w+")


def resolve_language_id(language: str | int) -> int:
    if isinstance(language, int) and not isinstance(language, bool):
        return language
    key = str(language).strip().lower()
    if key.isdigit():
        return int(key)
    if key in JUDGE0_LANGUAGE_IDS:
        return JUDGE0_LANGUAGE_IDS[key]
    raise ValidationError(f"Unsupported language: {language}")


def prepare_source(source_code: str, language: str | int) -> str:
    """Judge0 compiles Java and C# sources as class Main."""
    language_id = resolve_language_id(language)
    if language_id in (JUDGE0_LANGUAGE_IDS["java"], JUDGE0_LANGUAGE_IDS["csharp"]):
        return _PUBLIC_CLASS.sub("public class Main", source_code)
    return source_code


def build_request(source_code: str, language: str | int, stdin: str = "") -> ExecutionRequest:
    return ExecutionRequest(
        source_code=prepare_source(source_code, language),
        language_id=resolve_language_id(language),
        stdin=stdin or "",
    )


class JudgeClient(Protocol):
    async def create_submission(self, request: ExecutionRequest) -> str: ...

    async def get_submission(self, token: str) -> ExecutionResult: ...


def _encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def _decode(val: str | None) -> str:
    if not val:
        return ""
    try:
        return base64.b64decode(val).decode("utf-8", errors="replace")
    except ValueError:
        return val


class Judge0Client:
    """Async Judge0 client speaking the submit-then-poll protocol."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        api_host: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_host = api_host
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-rapidapi-key"] = self.api_key
            if self.api_host:
                headers["x-rapidapi-host"] = self.api_host
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.request(method, path, headers=self._headers(), **kwargs)
            except httpx.HTTPError as exc:
                logger.warning("Judge0 unreachable", extra={"path": path, "error": str(exc)})
                raise NetworkError(
                    "Failed to connect to the code execution service. "
                    "Please check your internet connection and try again."
                ) from exc

        if resp.status_code == 429:
            reset = resp.headers.get("x-ratelimit-reset")
            logger.warning("Judge0 rate limit exceeded", extra={"reset": reset})
            raise RateLimitedError(reset_at=int(reset) if reset and reset.isdigit() else None)
        remaining = resp.headers.get("x-ratelimit-remaining")
        if remaining is not None and remaining.isdigit() and int(remaining) < LOW_QUOTA_THRESHOLD:
            logger.warning("Low Judge0 rate limit remaining", extra={"remaining": int(remaining)})
        if resp.is_error:
            raise NetworkError(
                f"Code execution service returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise NetworkError("Code execution service returned an invalid response") from exc

    async def create_submission(self, request: ExecutionRequest) -> str:
        payload = {
            "source_code": _encode(request.source_code),
            "language_id": request.language_id,
            "stdin": _encode(request.stdin) if request.stdin else "",
        }
        body = await self._request(
            "POST",
            "/submissions",
            params={"base64_encoded": "true", "fields": "*"},
            json=payload,
        )
        token = body.get("token")
        if not token:
            raise NetworkError("Code execution service did not return a submission token")
        logger.debug("Judge0 submission created", extra={"token": token, "language_id": request.language_id})
        return token

    async def get_submission(self, token: str) -> ExecutionResult:
        body = await self._request(
            "GET",
            f"/submissions/{token}",
            params={"base64_encoded": "true", "fields": "*"},
        )
        status = body.get("status") or {}
        return ExecutionResult(
            status_id=int(status.get("id", 0)),
            status_description=status.get("description", ""),
            stdout=_decode(body.get("stdout")),
            stderr=_decode(body.get("stderr")),
            compile_output=_decode(body.get("compile_output")),
            message=_decode(body.get("message")),
            time=body.get("time"),
            memory=body.get("memory"),
            token=token,
        )
