from exam_engine.schemas.assessment import CamelModel


class MCQAnswerRequest(CamelModel):
    question_id: str
    # option index, or option id such as "B"
    option: int | str


class CodeRequest(CamelModel):
    question_id: str
    language: str
    source: str = ""


class LanguageRequest(CamelModel):
    question_id: str
    language: str


class RunRequest(CamelModel):
    question_id: str
    stdin: str | None = None


class EvaluateRequest(CamelModel):
    question_id: str
