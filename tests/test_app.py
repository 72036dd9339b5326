from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

import submission
import survey_store
from answer_engine import REQUIRED_MESSAGE

APP = str(Path(__file__).resolve().parent.parent / "app.py")


def _button(at, label):
    return next(b for b in at.button if b.label == label)


@pytest.fixture
def loaded(monkeypatch, sample_definition):
    monkeypatch.setattr(survey_store, "db_load_survey", lambda selector=None, sb=None: (sample_definition, ""))
    return sample_definition


def test_no_survey_configured():
    at = AppTest.from_file(APP, default_timeout=30).run()
    assert not at.exception
    assert at.error[0].value == survey_store.NOT_CONFIGURED
    assert "no survey open" in at.info[0].value


def test_first_step_renders(loaded):
    at = AppTest.from_file(APP, default_timeout=30).run()
    assert not at.exception
    assert at.title[0].value == loaded.survey.title
    assert [s.value for s in at.subheader] == ["Institution"]
    assert len(at.text_input) == 2
    assert len(at.number_input) == 3


def test_next_with_empty_step_shows_required(loaded):
    at = AppTest.from_file(APP, default_timeout=30).run()
    _button(at, "Next →").click().run()
    assert not at.exception
    assert [s.value for s in at.subheader] == ["Institution"]
    assert REQUIRED_MESSAGE in [e.value for e in at.error]


def test_next_after_answering_step(loaded):
    at = AppTest.from_file(APP, default_timeout=30).run()
    at.text_input(key="w_Q1").input("Court of Audit")
    at.text_input(key="w_Q2").input("Ghana")
    at.number_input(key="w_Q3").set_value(100)
    at.number_input(key="w_Q4").set_value(8)
    at.number_input(key="w_Q5").set_value(0)
    at.radio(key="w_Q6").set_value("no")
    at.run()
    _button(at, "Next →").click().run()
    assert not at.exception
    assert [s.value for s in at.subheader] == ["AI usage"]
    assert REQUIRED_MESSAGE not in [e.value for e in at.error]


def test_admin_dashboard(monkeypatch):
    stats = {
        "survey": {"id": "s-1", "title": "AI in Public Audit Institutions"},
        "totals": {"responses": 3},
        "q7_breakdown": [{"label": "Pilot projects only", "count": 2}, {"label": "No", "count": 1}],
        "breakdown_code": "Q7",
    }
    monkeypatch.setattr(survey_store, "db_read_stats", lambda selector=None, sb=None: (stats, ""))
    at = AppTest.from_file(APP, default_timeout=30)
    at.query_params["admin"] = "1"
    at.run()
    assert not at.exception
    assert at.metric[0].label == "Total Responses"
    assert str(at.metric[0].value) == "3"
    assert "Q7: AI Usage Breakdown" in [s.value for s in at.subheader]


# -------------------------
# Submit
# -------------------------

def _fill_institution(at):
    at.text_input(key="w_Q1").input("Court of Audit")
    at.text_input(key="w_Q2").input("Ghana")
    at.number_input(key="w_Q3").set_value(100)
    at.number_input(key="w_Q4").set_value(8)
    at.number_input(key="w_Q5").set_value(0)
    at.radio(key="w_Q6").set_value("no")
    at.run()


def _go_to_last_step(at):
    _fill_institution(at)
    _button(at, "Next →").click().run()
    at.radio(key="w_Q7").set_value("pilot")
    at.multiselect(key="w_Q8").select("llm")
    at.run()
    _button(at, "Next →").click().run()
    at.text_area(key="w_Q9").input("Skills")
    at.run()
    assert [s.value for s in at.subheader] == ["Outlook"]


@pytest.fixture
def saves(monkeypatch):
    calls = []
    replies = [(False, "Invalid or used token"), (True, "")]

    def save(body, ip=None, user_agent=None):
        calls.append(body)
        return replies[min(len(calls), len(replies)) - 1]

    monkeypatch.setattr(survey_store, "db_save_submission", save)
    return calls


def test_failed_save_keeps_answers_and_retry_succeeds(loaded, saves):
    at = AppTest.from_file(APP, default_timeout=30).run()
    _go_to_last_step(at)

    _button(at, "Submit").click().run()
    assert not at.exception
    assert len(saves) == 1
    assert "Invalid or used token" in [e.value for e in at.error]
    assert [s.value for s in at.subheader] == ["Outlook"]
    assert at.text_area(key="w_Q9").value == "Skills"
    assert at.session_state["answers"].values["Q1"] == "Court of Audit"
    assert not at.session_state["wizard"].in_flight

    _button(at, "Submit").click().run()
    assert not at.exception
    assert len(saves) == 2
    assert saves[1] == saves[0]
    assert saves[0]["institution"]["name"] == "Court of Audit"
    assert [s.value for s in at.success] == ["Thank you! Your responses have been recorded."]


def test_submit_goes_to_first_invalid_step(loaded, saves):
    at = AppTest.from_file(APP, default_timeout=30).run()
    _fill_institution(at)
    at.radio(key="nav_radio").set_value(2).run()
    assert [s.value for s in at.subheader] == ["Outlook"]
    at.text_area(key="w_Q9").input("Skills").run()

    _button(at, "Submit").click().run()
    assert not at.exception
    assert saves == []
    assert [s.value for s in at.subheader] == ["AI usage"]
    assert [e.value for e in at.error].count(REQUIRED_MESSAGE) == 2


def test_submit_button_disabled_while_sending(loaded, monkeypatch):
    def interrupted(payload, save, ip=None, user_agent=None):
        raise RuntimeError("connection dropped mid-send")

    monkeypatch.setattr(submission, "send_submission", interrupted)
    at = AppTest.from_file(APP, default_timeout=30).run()
    _go_to_last_step(at)

    _button(at, "Submit").click().run()
    # The page drawn before the send shows Submit and Back disabled
    assert at.exception
    assert _button(at, "Submit").disabled
    assert _button(at, "← Back").disabled
    assert not at.session_state["wizard"].in_flight
