from answer_engine import REQUIRED_MESSAGE, AnswerState, set_value
from survey_model import Option, Question
from wizard_nav import (
    WizardState,
    attempt_submit,
    begin_submit,
    build_steps,
    end_submit,
    go_back,
    go_next,
    jump_to,
    start_wizard,
)


def q(code, section, qtype="text", options=()):
    return Question(id=f"id-{code}", code=code, section=section, prompt=code, qtype=qtype, options=tuple(options))


YES_NO = (Option("o-y", "Yes", "yes"), Option("o-n", "No", "no"))
TOOLS = (Option("o-llm", "LLMs", "llm"), Option("o-ml", "ML", "ml"), Option("o-oth", "Other", "other"))

QUESTIONS = [
    q("Q1", "Org"),
    q("Q2", "Org", "single", YES_NO),
    q("Q7", "Usage", "multi", TOOLS),
    q("Q9", "Outlook", "longtext"),
]


def test_steps_follow_first_encountered_section_order():
    questions = [q("A", "Org"), q("B", "Usage"), q("C", "Org"), q("D", "Outlook")]
    steps = build_steps(questions)
    assert [s.section for s in steps] == ["Org", "Usage", "Outlook"]
    assert steps[0].codes == ("A", "C")


def test_next_blocked_until_step_is_answered():
    wizard = start_wizard(QUESTIONS)
    answers = AnswerState(values={"Q2": "yes"})

    wizard, answers = go_next(wizard, answers)
    assert wizard.current == 0
    assert answers.error_for("Q1") == REQUIRED_MESSAGE
    assert answers.error_for("Q2") is None

    answers = set_value(answers, "Q1", "Court of Audit")
    assert answers.error_for("Q1") is None
    wizard, answers = go_next(wizard, answers)
    assert wizard.current == 1
    assert wizard.current_step.section == "Usage"


def test_next_only_validates_current_step():
    wizard = start_wizard(QUESTIONS)
    _, answers = go_next(wizard, AnswerState())
    assert "Q7" not in answers.errors
    assert "Q9" not in answers.errors


def test_back_and_first_step():
    wizard = WizardState(steps=tuple(build_steps(QUESTIONS)), current=2)
    wizard = go_back(wizard)
    assert wizard.current == 1
    wizard = go_back(go_back(wizard))
    assert wizard.current == 0
    assert wizard.is_first


def test_jump_is_not_gated_and_clamps():
    wizard = start_wizard(QUESTIONS)
    assert jump_to(wizard, 2).current == 2
    assert jump_to(wizard, 2).is_last
    assert jump_to(wizard, 99).current == 2
    assert jump_to(wizard, -4).current == 0


def test_submit_moves_to_first_invalid_step():
    wizard = jump_to(start_wizard(QUESTIONS), 2)
    answers = AnswerState(values={"Q1": "SAI", "Q2": "no", "Q7": ["llm", "other"], "Q9": "Later"}, errors={"Q1": "stale"})
    check = attempt_submit(wizard, answers)
    assert not check.ok
    assert check.wizard.current == 1
    assert check.answers.error_for("Q7") == REQUIRED_MESSAGE
    assert check.answers.error_for("Q1") is None


def test_submit_ok_keeps_position():
    wizard = jump_to(start_wizard(QUESTIONS), 2)
    answers = AnswerState(values={"Q1": "SAI", "Q2": "no", "Q7": ["llm", "other"], "Q7_other": "Chatbots", "Q9": "Later"})
    check = attempt_submit(wizard, answers)
    assert check.ok
    assert check.wizard.current == 2
    assert not any(check.answers.errors.values())


def test_single_submission_in_flight():
    wizard = start_wizard(QUESTIONS)
    wizard, allowed = begin_submit(wizard)
    assert allowed and wizard.in_flight
    again, allowed = begin_submit(wizard)
    assert not allowed
    assert again is wizard
    assert not end_submit(wizard).in_flight


def test_empty_survey_has_no_steps():
    wizard = start_wizard([])
    assert wizard.step_count == 0
    assert wizard.current_step is None
    answers = AnswerState()
    assert go_next(wizard, answers) == (wizard, answers)
    assert jump_to(wizard, 3).current == 0
    assert attempt_submit(wizard, answers).ok


def test_back_keeps_errors():
    wizard = jump_to(start_wizard(QUESTIONS), 1)
    wizard, answers = go_next(wizard, AnswerState(values={"Q7": ["other"]}))
    assert answers.error_for("Q7") == REQUIRED_MESSAGE
    back = go_back(wizard)
    assert back.current == 0
    assert answers.error_for("Q7") == REQUIRED_MESSAGE


def test_companion_text_unblocks_next():
    wizard = jump_to(start_wizard(QUESTIONS), 1)
    answers = AnswerState(values={"Q7": ["ml", "other"]})
    wizard, answers = go_next(wizard, answers)
    assert wizard.current == 1
    answers = set_value(answers, "Q7_other", "Chatbots")
    wizard, answers = go_next(wizard, answers)
    assert wizard.current == 2
    assert answers.error_for("Q7") is None
