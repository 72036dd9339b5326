"""
Answer state engine.

Answer values live in a plain mapping keyed by question code, so the same
functions work on st.session_state data and on dictionaries in tests:
- text / longtext : str
- number : number, numeric string, or "" / None when empty
- single : the selected option value (str)
- multi : list of selected option values, in selection order
- "<code>_other" : free text attached to the "other" option

Every reader goes through read_answer(), which turns the raw value into a
tagged variant for the question's qtype.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from survey_model import OTHER, Question, SurveyDefinition, other_key

REQUIRED_MESSAGE = "This question is required."


# =========================
# Tagged answer variants
# =========================

@dataclass(frozen=True)
class TextAnswer:
    text: Optional[str]

    def is_answered(self, question: Question) -> bool:
        return bool((self.text or "").strip())


@dataclass(frozen=True)
class NumberAnswer:
    raw: Any

    @property
    def is_blank(self) -> bool:
        return self.raw is None or (isinstance(self.raw, str) and self.raw == "")

    def is_answered(self, question: Question) -> bool:
        # 0 counts as answered
        return not self.is_blank

    @property
    def number(self) -> Optional[Union[int, float]]:
        if self.is_blank:
            return None
        return to_number(self.raw)


@dataclass(frozen=True)
class SingleAnswer:
    selected: Optional[str]
    other_text: str = ""

    def is_answered(self, question: Question) -> bool:
        if not self.selected:
            return False
        if self.selected == OTHER and question.has_other:
            return bool(self.other_text.strip())
        return True


@dataclass(frozen=True)
class MultiAnswer:
    selected: Tuple[str, ...] = ()
    other_text: str = ""

    def is_answered(self, question: Question) -> bool:
        if not self.selected:
            return False
        if OTHER in self.selected:
            return bool(self.other_text.strip())
        return True


AnswerValue = Union[TextAnswer, NumberAnswer, SingleAnswer, MultiAnswer]


def to_number(raw: Any) -> Union[int, float]:
    """Numeric coercion of a stored number value; NaN when not numeric."""
    if isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, (int, float)):
        return raw
    try:
        s = str(raw).strip()
        if not s:
            return math.nan
        f = float(s)
    except (TypeError, ValueError):
        return math.nan
    if f.is_integer() and "." not in s and "e" not in s.lower():
        return int(f)
    return f


def _companion(values: Mapping[str, Any], code: str) -> str:
    v = values.get(other_key(code))
    return "" if v is None else str(v)


def read_answer(question: Question, values: Mapping[str, Any]) -> Optional[AnswerValue]:
    raw = values.get(question.code)
    qtype = question.qtype
    if qtype in ("text", "longtext"):
        return TextAnswer(None if raw is None else str(raw))
    if qtype == "number":
        return NumberAnswer(raw)
    if qtype == "single":
        return SingleAnswer(selected=None if raw in (None, "") else str(raw),
                            other_text=_companion(values, question.code))
    if qtype == "multi":
        if raw is None:
            selected: Tuple[str, ...] = ()
        elif isinstance(raw, (list, tuple)):
            selected = tuple(str(x) for x in raw if x not in (None, ""))
        else:
            selected = (str(raw),) if str(raw) else ()
        return MultiAnswer(selected=selected, other_text=_companion(values, question.code))
    return None


# =========================
# Queries
# =========================

def is_answered(question: Question, values: Mapping[str, Any]) -> bool:
    answer = read_answer(question, values)
    if answer is None:
        return False
    return answer.is_answered(question)


@dataclass(frozen=True)
class Progress:
    answered_count: int
    total: int
    percent: int


def compute_progress(questions: Sequence[Question], values: Mapping[str, Any]) -> Progress:
    total = len(questions)
    answered = sum(1 for q in questions if is_answered(q, values))
    if total == 0:
        return Progress(answered_count=0, total=0, percent=0)
    # round half up
    percent = int(math.floor(answered / total * 100 + 0.5))
    return Progress(answered_count=answered, total=total, percent=percent)


def validate(questions: Sequence[Question], values: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    return {q.code: (None if is_answered(q, values) else REQUIRED_MESSAGE) for q in questions}


def has_errors(errors: Mapping[str, Optional[str]]) -> bool:
    return any(bool(e) for e in errors.values())


# =========================
# State
# =========================

@dataclass(frozen=True)
class AnswerState:
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, Optional[str]] = field(default_factory=dict)

    def error_for(self, code: str) -> Optional[str]:
        return self.errors.get(code)


def set_value(state: AnswerState, key: str, value: Any) -> AnswerState:
    """Store a value and clear the stored error for that key.

    The companion key "<code>_other" is a key of its own, so editing the
    free text never clears the error of the primary question.
    """
    values = dict(state.values)
    values[key] = value
    errors = dict(state.errors)
    if key in errors:
        errors[key] = None
    return replace(state, values=values, errors=errors)


def with_errors(state: AnswerState, errors: Mapping[str, Optional[str]], replace_all: bool = False) -> AnswerState:
    merged = {} if replace_all else dict(state.errors)
    merged.update(errors)
    return replace(state, errors=merged)


# =========================
# Submission payload
# =========================

@dataclass(frozen=True)
class SubmittedAnswer:
    question_id: str
    option_id: Optional[str] = None
    value_text: Optional[str] = None
    value_number: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "option_id": self.option_id,
            "value_text": self.value_text,
            "value_number": self.value_number,
        }


def _trimmed_or_none(s: str) -> Optional[str]:
    s = (s or "").strip()
    return s or None


def build_answer_payload(questions: Sequence[Question], values: Mapping[str, Any]) -> List[SubmittedAnswer]:
    """Wire-level answers in question order.

    Does not re-validate : questions without a stored value are skipped,
    and selections that match no offered option are dropped.
    """
    out: List[SubmittedAnswer] = []
    for q in questions:
        answer = read_answer(q, values)
        if answer is None:
            continue

        if isinstance(answer, SingleAnswer):
            if not answer.selected:
                continue
            opt = q.option_by_value(answer.selected)
            if opt is None:
                continue
            text = _trimmed_or_none(answer.other_text) if answer.selected == OTHER else None
            out.append(SubmittedAnswer(question_id=q.id, option_id=opt.id, value_text=text))

        elif isinstance(answer, MultiAnswer):
            for v in answer.selected:
                opt = q.option_by_value(v)
                if opt is None:
                    continue
                text = _trimmed_or_none(answer.other_text) if opt.value == OTHER else None
                out.append(SubmittedAnswer(question_id=q.id, option_id=opt.id, value_text=text))

        elif isinstance(answer, NumberAnswer):
            if answer.is_blank:
                continue
            out.append(SubmittedAnswer(question_id=q.id, value_number=answer.number))

        elif isinstance(answer, TextAnswer):
            if answer.text is None:
                continue
            out.append(SubmittedAnswer(question_id=q.id, value_text=answer.text))
    return out


# =========================
# Institution profile
# =========================

@dataclass(frozen=True)
class InstitutionFieldMap:
    """Which question code carries each institution field."""
    name: str = "Q1"
    country: str = "Q2"
    employees_total: str = "Q3"
    employees_it: str = "Q4"
    employees_it_audit: str = "Q5"
    has_ai_unit: str = "Q6"

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, str]]) -> "InstitutionFieldMap":
        base = cls()
        if not mapping:
            return base
        known = {k: str(v) for k, v in mapping.items() if k in base.__dataclass_fields__ and v}
        return replace(base, **known)


DEFAULT_INSTITUTION_FIELDS = InstitutionFieldMap()


@dataclass(frozen=True)
class InstitutionProfile:
    name: Optional[str] = None
    country: Optional[str] = None
    employees_total: Optional[float] = None
    employees_it: Optional[float] = None
    employees_it_audit: Optional[float] = None
    has_ai_unit: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "country": self.country,
            "employees_total": self.employees_total,
            "employees_it": self.employees_it,
            "employees_it_audit": self.employees_it_audit,
            "has_ai_unit": self.has_ai_unit,
        }


def _text_field(values: Mapping[str, Any], code: str) -> Optional[str]:
    v = values.get(code)
    if v is None:
        return None
    return str(v).strip() or None


def _count_field(values: Mapping[str, Any], code: str) -> Optional[Union[int, float]]:
    # Absent or non-numeric counts are stored as null, not 0
    v = values.get(code)
    if v is None or v == "":
        return None
    n = to_number(v)
    if isinstance(n, float) and math.isnan(n):
        return None
    return n


def _yes_no(values: Mapping[str, Any], code: str) -> Optional[bool]:
    v = values.get(code)
    if v == "yes":
        return True
    if v == "no":
        return False
    return None


def derive_institution_profile(
    values: Mapping[str, Any],
    field_map: InstitutionFieldMap = DEFAULT_INSTITUTION_FIELDS,
) -> InstitutionProfile:
    return InstitutionProfile(
        name=_text_field(values, field_map.name),
        country=_text_field(values, field_map.country),
        employees_total=_count_field(values, field_map.employees_total),
        employees_it=_count_field(values, field_map.employees_it),
        employees_it_audit=_count_field(values, field_map.employees_it_audit),
        has_ai_unit=_yes_no(values, field_map.has_ai_unit),
    )


def field_map_for(definition: SurveyDefinition) -> InstitutionFieldMap:
    return InstitutionFieldMap.from_mapping(definition.survey.institution_map)


def assemble_submission(
    definition: SurveyDefinition,
    values: Mapping[str, Any],
    token: Optional[str] = None,
    field_map: Optional[InstitutionFieldMap] = None,
) -> Dict[str, Any]:
    """Payload sent to the store : {survey_id, institution, answers, token}."""
    fmap = field_map or field_map_for(definition)
    token = (token or "").strip() or None
    return {
        "survey_id": definition.survey.id,
        "institution": derive_institution_profile(values, fmap).to_dict(),
        "answers": [a.to_dict() for a in build_answer_payload(definition.questions, values)],
        "token": token,
    }
