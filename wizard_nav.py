"""
Wizard navigation : one step per section, in first-encountered section order.

Navigation never touches answer values; transitions that validate return the
updated AnswerState alongside the new WizardState.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from answer_engine import AnswerState, has_errors, validate, with_errors
from survey_model import Question


@dataclass(frozen=True)
class WizardStep:
    section: str
    questions: Tuple[Question, ...]

    @property
    def codes(self) -> Tuple[str, ...]:
        return tuple(q.code for q in self.questions)


def build_steps(questions: Sequence[Question]) -> List[WizardStep]:
    order: List[str] = []
    grouped = {}
    for q in questions:
        if q.section not in grouped:
            order.append(q.section)
            grouped[q.section] = []
        grouped[q.section].append(q)
    return [WizardStep(section=s, questions=tuple(grouped[s])) for s in order]


@dataclass(frozen=True)
class WizardState:
    steps: Tuple[WizardStep, ...]
    current: int = 0
    in_flight: bool = False

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def current_step(self) -> Optional[WizardStep]:
        if not self.steps:
            return None
        return self.steps[self.current]

    @property
    def is_first(self) -> bool:
        return self.current <= 0

    @property
    def is_last(self) -> bool:
        return self.current >= self.step_count - 1

    @property
    def all_questions(self) -> List[Question]:
        return [q for s in self.steps for q in s.questions]


def start_wizard(questions: Sequence[Question]) -> WizardState:
    return WizardState(steps=tuple(build_steps(questions)), current=0)


def _clamp(wizard: WizardState, idx: int) -> int:
    if wizard.step_count == 0:
        return 0
    return max(0, min(int(idx), wizard.step_count - 1))


def go_next(wizard: WizardState, answers: AnswerState) -> Tuple[WizardState, AnswerState]:
    """Advance only when every question of the current step is answered."""
    step = wizard.current_step
    if step is None:
        return wizard, answers
    errors = validate(step.questions, answers.values)
    answers = with_errors(answers, errors)
    if has_errors(errors):
        return wizard, answers
    return replace(wizard, current=_clamp(wizard, wizard.current + 1)), answers


def go_back(wizard: WizardState) -> WizardState:
    if wizard.current <= 0:
        return wizard
    return replace(wizard, current=wizard.current - 1)


def jump_to(wizard: WizardState, idx: int) -> WizardState:
    # Sidebar jumps are not gated by validation
    return replace(wizard, current=_clamp(wizard, idx))


def first_invalid_step(wizard: WizardState, errors) -> Optional[int]:
    for i, step in enumerate(wizard.steps):
        if any(errors.get(code) for code in step.codes):
            return i
    return None


@dataclass(frozen=True)
class SubmitCheck:
    wizard: WizardState
    answers: AnswerState
    ok: bool


def attempt_submit(wizard: WizardState, answers: AnswerState) -> SubmitCheck:
    """Full-form validation; on failure move to the first step with an error."""
    errors = validate(wizard.all_questions, answers.values)
    answers = with_errors(answers, errors, replace_all=True)
    bad = first_invalid_step(wizard, errors)
    if bad is None:
        return SubmitCheck(wizard=wizard, answers=answers, ok=True)
    return SubmitCheck(wizard=replace(wizard, current=bad), answers=answers, ok=False)


def begin_submit(wizard: WizardState) -> Tuple[WizardState, bool]:
    """Mark a submission in flight; refused while another one is running."""
    if wizard.in_flight:
        return wizard, False
    return replace(wizard, in_flight=True), True


def end_submit(wizard: WizardState) -> WizardState:
    return replace(wizard, in_flight=False)
