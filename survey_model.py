"""
Survey definition model.

A survey definition is loaded once per respondent session and never mutated:
- Survey : id, title, description
- Question : code (stable key for answers), section, prompt, qtype, ordered options
- Option : label shown to the respondent, value used as the semantic token ("yes", "no", "other", ...)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

QTYPES = ("text", "number", "single", "multi", "longtext")
CHOICE_QTYPES = ("single", "multi")
TEXT_QTYPES = ("text", "longtext")

# Reserved option value that activates the free-text companion field
OTHER = "other"


def other_key(code: str) -> str:
    """Key of the companion free-text value for a question's "other" option."""
    return f"{code}_other"


@dataclass(frozen=True)
class Option:
    id: str
    label: str
    value: str


@dataclass(frozen=True)
class Question:
    id: str
    code: str
    section: str
    prompt: str
    qtype: str
    options: Tuple[Option, ...] = ()

    def option_by_value(self, value: Any) -> Optional[Option]:
        for o in self.options:
            if o.value == value:
                return o
        return None

    @property
    def other_option(self) -> Optional[Option]:
        return self.option_by_value(OTHER)

    @property
    def has_other(self) -> bool:
        return self.other_option is not None


@dataclass(frozen=True)
class Survey:
    id: str
    title: str
    description: Optional[str] = None
    # Optional per-survey override of the institution field -> question code table
    institution_map: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class SurveyDefinition:
    survey: Survey
    questions: Tuple[Question, ...] = field(default_factory=tuple)

    def question_by_code(self, code: str) -> Optional[Question]:
        for q in self.questions:
            if q.code == code:
                return q
        return None

    def to_payload(self) -> Dict[str, Any]:
        """Loader payload shape : {survey, questions[]} with options embedded."""
        return {
            "survey": {
                "id": self.survey.id,
                "title": self.survey.title,
                "description": self.survey.description,
                "institution_map": self.survey.institution_map,
            },
            "questions": [
                {
                    "id": q.id,
                    "code": q.code,
                    "section": q.section,
                    "prompt": q.prompt,
                    "qtype": q.qtype,
                    "options": [{"id": o.id, "label": o.label, "value": o.value} for o in q.options],
                }
                for q in self.questions
            ],
        }


# -------------------------
# Row -> model shaping
# -------------------------

def _s(v: Any) -> str:
    return "" if v is None else str(v)


def option_from_row(row: Dict[str, Any]) -> Option:
    return Option(id=_s(row.get("id")), label=_s(row.get("label")), value=_s(row.get("value")))


def question_from_row(row: Dict[str, Any], options: Iterable[Dict[str, Any]] = ()) -> Question:
    return Question(
        id=_s(row.get("id")),
        code=_s(row.get("code")).strip(),
        section=_s(row.get("section")),
        prompt=_s(row.get("prompt")),
        qtype=_s(row.get("qtype")).strip().lower(),
        options=tuple(option_from_row(o) for o in (options or [])),
    )


def survey_from_row(row: Dict[str, Any]) -> Survey:
    inst_map = row.get("institution_map")
    if not isinstance(inst_map, dict) or not inst_map:
        inst_map = None
    return Survey(
        id=_s(row.get("id")),
        title=_s(row.get("title")),
        description=row.get("description") or None,
        institution_map={str(k): str(v) for k, v in inst_map.items()} if inst_map else None,
    )


def _order_key(row: Dict[str, Any]) -> Tuple[int, int]:
    try:
        return (0, int(row.get("order_index")))
    except (TypeError, ValueError):
        return (1, 0)


def shape_definition(
    survey_row: Dict[str, Any],
    question_rows: List[Dict[str, Any]],
    option_rows: List[Dict[str, Any]],
) -> SurveyDefinition:
    """Embed options into their question, both ordered by order_index.

    Rows are expected already ordered by the store; the sort is stable so
    rows without an order_index keep their relative position at the end.
    """
    by_q: Dict[str, List[Dict[str, Any]]] = {}
    for o in sorted(option_rows or [], key=_order_key):
        by_q.setdefault(_s(o.get("question_id")), []).append(o)

    questions = tuple(
        question_from_row(q, by_q.get(_s(q.get("id")), []))
        for q in sorted(question_rows or [], key=_order_key)
    )
    return SurveyDefinition(survey=survey_from_row(survey_row), questions=questions)


def definition_from_payload(payload: Dict[str, Any]) -> SurveyDefinition:
    """Inverse of SurveyDefinition.to_payload (used by the CLI and tests)."""
    survey = survey_from_row(payload.get("survey") or {})
    questions = tuple(
        question_from_row(q, q.get("options") or [])
        for q in (payload.get("questions") or [])
    )
    return SurveyDefinition(survey=survey, questions=questions)
