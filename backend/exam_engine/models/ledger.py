import copy
import logging
from dataclasses import dataclass, field

from exam_engine.core.errors import ValidationError
from exam_engine.schemas.session import ExecutionOutcome


logger = logging.getLogger(__name__)


@dataclass
class LedgerSnapshot:
    mcq_answers: dict[str, int] = field(default_factory=dict)
    code_by_question_and_language: dict[str, dict[str, str]] = field(default_factory=dict)
    selected_language: dict[str, str] = field(default_factory=dict)
    execution_outcome: dict[str, ExecutionOutcome] = field(default_factory=dict)

    def current_source(self, question_id: str) -> str:
        language = self.selected_language.get(question_id)
        if language is None:
            return ""
        return self.code_by_question_and_language.get(question_id, {}).get(language, "")

    def is_code_attempted(self, question_id: str) -> bool:
        return bool(self.current_source(question_id).strip())


class AnswerLedger:
    """Bookkeeping for everything the candidate has answered. Last write wins per question."""

    def __init__(self) -> None:
        self._data = LedgerSnapshot()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _ensure_writable(self) -> None:
        if self._frozen:
            raise ValidationError("The assessment has already been submitted")

    def record_mcq(self, question_id: str, option_index: int) -> None:
        self._ensure_writable()
        self._data.mcq_answers[question_id] = option_index

    def record_code(self, question_id: str, language: str, source: str) -> None:
        self._ensure_writable()
        self._data.code_by_question_and_language.setdefault(question_id, {})[language] = source
        self._data.selected_language[question_id] = language

    def select_language(self, question_id: str, language: str) -> None:
        self._ensure_writable()
        self._data.selected_language[question_id] = language

    def record_execution_outcome(self, question_id: str, outcome: ExecutionOutcome) -> bool:
        # a grading run can finish after submission; its result no longer counts
        if self._frozen:
            logger.info("Dropping execution outcome after submission", extra={"question_id": question_id})
            return False
        self._data.execution_outcome[question_id] = outcome
        return True

    def current_source(self, question_id: str) -> str:
        return self._data.current_source(question_id)

    def current_language(self, question_id: str) -> str | None:
        return self._data.selected_language.get(question_id)

    def snapshot(self) -> LedgerSnapshot:
        return copy.deepcopy(self._data)
