"""
Assessment definitions as produced by the content-authoring service.

The engine treats these as read-only input. The validators accept the
authoring payload as it is served (camelCase keys, `entityType`, options as
plain strings, `configuration` block, `startDate`/`endDate`) and normalize it
into one shape.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


UTC = timezone.utc
DEFAULT_TIMEZONE = "Asia/Kolkata"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _normalize_points(data: dict) -> dict:
    if data.get("points") is None:
        data.pop("points", None)
        if data.get("marks") is not None:
            data["points"] = data["marks"]
    if "questionId" not in data and "question_id" not in data and data.get("id") is not None:
        data["questionId"] = str(data["id"])
    return data


class TestCase(CamelModel):
    __test__ = False

    input: str = ""
    expected_output: str = ""

    @model_validator(mode="before")
    @classmethod
    def _flatten_inputs(cls, data: Any) -> Any:
        # authoring stores stdin either flat or as {"inputs": {"input": ...}}
        if isinstance(data, dict) and "input" not in data and isinstance(data.get("inputs"), dict):
            data = {**data, "input": data["inputs"].get("input", "")}
        return data

    @field_validator("input", "expected_output", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)


class Example(CamelModel):
    input: str = ""
    output: str = ""

    @field_validator("input", "output", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)


class MCQOption(CamelModel):
    id: str
    text: str = ""


class MCQQuestion(CamelModel):
    kind: Literal["mcq"] = "mcq"
    question_id: str
    text: str = ""
    options: list[MCQOption] = Field(default_factory=list)
    correct_answer: frozenset[str] = frozenset()
    points: int = Field(default=1, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _normalize_points(dict(data))
        if "text" not in data and data.get("question"):
            data["text"] = data["question"]

        options = []
        for index, option in enumerate(data.get("options") or []):
            if isinstance(option, str):
                options.append({"id": chr(65 + index), "text": option})
            elif isinstance(option, dict) and not option.get("id"):
                options.append({**option, "id": chr(65 + index)})
            else:
                options.append(option)
        data["options"] = options
        option_ids = [o["id"] if isinstance(o, dict) else o.id for o in options]

        key = "correct_answer" if "correct_answer" in data else "correctAnswer"
        raw = data.get(key)
        if raw is None:
            answers = []
        elif isinstance(raw, (list, tuple, set, frozenset)):
            answers = list(raw)
        else:
            answers = [raw]
        data[key] = [_option_id(answer, option_ids) for answer in answers]
        return data

    def option_index(self, option: int | str) -> int | None:
        """Resolve an option index or option id to its index, None if it does not exist."""
        if isinstance(option, int) and not isinstance(option, bool):
            return option if 0 <= option < len(self.options) else None
        for index, candidate in enumerate(self.options):
            if candidate.id == option:
                return index
        return None

    def option_id(self, index: int) -> str | None:
        if 0 <= index < len(self.options):
            return self.options[index].id
        return None

    def is_correct(self, option_id: str | None) -> bool:
        return option_id is not None and option_id in self.correct_answer


def _option_id(answer: Any, option_ids: list[str]) -> str:
    if isinstance(answer, int) and not isinstance(answer, bool) and 0 <= answer < len(option_ids):
        return option_ids[answer]
    return str(answer)


class CodingQuestion(CamelModel):
    kind: Literal["coding"] = "coding"
    question_id: str
    title: str = ""
    text: str = ""
    starter_code: str = ""
    test_cases: list[TestCase] = Field(default_factory=list)
    examples: list[Example] = Field(default_factory=list)
    points: int = Field(default=1, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _normalize_points(dict(data))
        if "text" not in data and data.get("description"):
            data["text"] = data["description"]
        for key in ("testCases", "examples"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


Question = Annotated[MCQQuestion | CodingQuestion, Field(discriminator="kind")]


class Scheduling(CamelModel):
    timezone: str = DEFAULT_TIMEZONE
    start_at: datetime | None = None
    end_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_date_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "startAt" not in data and "startDate" in data:
                data["startAt"] = data.pop("startDate")
            if "endAt" not in data and "endDate" in data:
                data["endAt"] = data.pop("endDate")
            if not data.get("timezone"):
                data.pop("timezone", None)
        return data

    @field_validator("start_at", "end_at", mode="after")
    @classmethod
    def _to_utc(cls, value: datetime | None, info) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            name = info.data.get("timezone") or DEFAULT_TIMEZONE
            try:
                value = value.replace(tzinfo=ZoneInfo(name))
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValueError(f"Unknown timezone: {name}") from exc
        return value.astimezone(UTC)


def _question_kind(question: dict) -> str:
    kind = str(question.get("kind") or question.get("entityType") or "").lower()
    if kind in ("mcq", "coding"):
        return kind
    if kind in ("programming", "code"):
        return "coding"
    return "mcq" if question.get("options") else "coding"


class AssessmentDefinition(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    assessment_id: str = ""
    title: str = ""
    questions: list[Question] = Field(default_factory=list)
    duration: int | None = None
    scheduling: Scheduling | None = None
    max_attempts: int = 1
    passing_score: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_authoring_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if isinstance(data.get("data"), dict):
            data = data["data"]
        if isinstance(data.get("assessment"), dict):
            data = {**data["assessment"], "questions": data.get("questions", [])}
        data = dict(data)

        if "assessmentId" not in data and "assessment_id" not in data and data.get("id") is not None:
            data["assessmentId"] = str(data["id"])
        configuration = data.get("configuration") or {}
        for key in ("duration", "maxAttempts", "passingScore"):
            if data.get(key) is None and configuration.get(key) is not None:
                data[key] = configuration[key]
        if data.get("maxAttempts") is None:
            data.pop("maxAttempts", None)

        scheduling = data.get("scheduling")
        if isinstance(scheduling, dict) and not any(
            scheduling.get(key) for key in ("startAt", "startDate", "endAt", "endDate", "start_at", "end_at")
        ):
            data["scheduling"] = None

        questions = []
        for question in data.get("questions") or []:
            if isinstance(question, dict):
                question = {**question, "kind": _question_kind(question)}
            questions.append(question)
        data["questions"] = questions
        return data

    @model_validator(mode="after")
    def _unique_question_ids(self) -> "AssessmentDefinition":
        seen: set[str] = set()
        for question in self.questions:
            if question.question_id in seen:
                raise ValueError(f"Duplicate questionId: {question.question_id}")
            seen.add(question.question_id)
        return self

    def get_question(self, question_id: str) -> MCQQuestion | CodingQuestion | None:
        for question in self.questions:
            if question.question_id == question_id:
                return question
        return None

    @property
    def max_score(self) -> int:
        return sum(question.points for question in self.questions)
