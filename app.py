"""
AI audit survey : Streamlit front end.

  streamlit run app.py

URL parameters :
- survey=<id> : answer a specific survey instead of the active one
- t=<token>   : invite token, passed through unchanged on submission
- admin=1     : aggregate statistics (add diag=1 for configuration diagnostics)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import pandas as pd
import streamlit as st

import response_tables
import survey_store
from answer_engine import AnswerState, assemble_submission, compute_progress, set_value
from submission import send_submission
from survey_model import OTHER, Question, SurveyDefinition, other_key
from wizard_nav import (
    WizardState,
    attempt_submit,
    begin_submit,
    end_submit,
    go_back,
    go_next,
    jump_to,
    start_wizard,
)

APP_TITLE = "AI Audit Survey"
CONFIDENTIAL_NOTE = "All data will remain confidential."
PLACEHOLDER_OTHER = "Please specify"


# =========================
# Helpers : query params and session
# =========================

def qp_get(name: str) -> Optional[str]:
    v = st.query_params.get(name)
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def qp_flag(name: str) -> bool:
    return (qp_get(name) or "").lower() in ("1", "true", "yes")


def request_meta() -> Tuple[Optional[str], Optional[str]]:
    headers = st.context.headers
    return headers.get("X-Forwarded-For"), headers.get("User-Agent")


def init_session() -> None:
    if "definition" not in st.session_state:
        st.session_state.definition = None
    if "load_error" not in st.session_state:
        st.session_state.load_error = None
    if "answers" not in st.session_state:
        st.session_state.answers = AnswerState()
    if "wizard" not in st.session_state:
        st.session_state.wizard = None
    if "submit_error" not in st.session_state:
        st.session_state.submit_error = None
    if "submitted" not in st.session_state:
        st.session_state.submitted = False


def load_definition() -> Optional[SurveyDefinition]:
    """Load the survey once per session; a failed load is not retried."""
    if st.session_state.definition is not None:
        return st.session_state.definition
    if st.session_state.load_error:
        return None
    definition, msg = survey_store.db_load_survey(qp_get("survey"))
    if definition is None:
        st.session_state.load_error = msg or "Failed to load survey"
        return None
    st.session_state.definition = definition
    st.session_state.wizard = start_wizard(definition.questions)
    return definition


def _widget_key(key: str) -> str:
    return f"w_{key}"


def _on_edit(key: str) -> None:
    v = st.session_state.get(_widget_key(key))
    if isinstance(v, (list, tuple)):
        v = list(v)
    st.session_state.answers = set_value(st.session_state.answers, key, v)


def _seed_widget(key: str, default: Any) -> bool:
    """Re-seed a widget from answer state after it was unmounted by a step change."""
    wk = _widget_key(key)
    if wk in st.session_state:
        return True
    values = st.session_state.answers.values
    if key in values and values[key] is not None:
        st.session_state[wk] = values[key]
        return True
    if default is not None:
        st.session_state[wk] = default
        return True
    return False


# =========================
# UI : questions
# =========================

def render_question(q: Question) -> None:
    label = f"{q.code}. {q.prompt}"
    wk = _widget_key(q.code)
    answers: AnswerState = st.session_state.answers

    if q.qtype == "text":
        _seed_widget(q.code, "")
        st.text_input(label, key=wk, on_change=_on_edit, args=(q.code,))
    elif q.qtype == "longtext":
        _seed_widget(q.code, "")
        st.text_area(label, key=wk, height=120, on_change=_on_edit, args=(q.code,))
    elif q.qtype == "number":
        raw = answers.values.get(q.code)
        if wk not in st.session_state and isinstance(raw, (int, float)) and not isinstance(raw, bool):
            st.session_state[wk] = raw
        kwargs = {} if wk in st.session_state else {"value": None}
        st.number_input(label, min_value=0, step=1, key=wk, on_change=_on_edit, args=(q.code,), **kwargs)
    elif q.qtype == "single":
        labels = {o.value: o.label for o in q.options}
        kwargs = {} if _seed_widget(q.code, None) else {"index": None}
        st.radio(
            label,
            options=list(labels.keys()),
            format_func=lambda v: labels.get(v, v),
            key=wk,
            on_change=_on_edit,
            args=(q.code,),
            **kwargs,
        )
    elif q.qtype == "multi":
        labels = {o.value: o.label for o in q.options}
        _seed_widget(q.code, [])
        st.multiselect(
            label,
            options=list(labels.keys()),
            format_func=lambda v: labels.get(v, v),
            key=wk,
            on_change=_on_edit,
            args=(q.code,),
        )
    else:
        st.markdown(f"**{label}**")
        st.caption(f"Unsupported question type: {q.qtype}")

    if q.has_other:
        current = st.session_state.answers.values.get(q.code)
        selected = current == OTHER or (isinstance(current, (list, tuple)) and OTHER in current)
        if selected:
            okey = other_key(q.code)
            _seed_widget(okey, "")
            st.text_input(PLACEHOLDER_OTHER, key=_widget_key(okey), on_change=_on_edit, args=(okey,))

    err = st.session_state.answers.error_for(q.code)
    if err:
        st.error(err)


# =========================
# Navigation
# =========================

def _on_jump() -> None:
    st.session_state.wizard = jump_to(st.session_state.wizard, int(st.session_state.nav_radio))


def render_sidebar(wizard: WizardState) -> None:
    st.sidebar.header("Sections")
    labels = [f"{i + 1}. {s.section}" for i, s in enumerate(wizard.steps)]
    if not labels:
        return
    # Keep sidebar selection in sync with the wizard
    st.session_state.nav_radio = wizard.current
    st.sidebar.radio(
        "Go to",
        options=list(range(len(labels))),
        format_func=lambda i: labels[i],
        key="nav_radio",
        on_change=_on_jump,
    )
    st.sidebar.caption("Required questions must be answered before moving to the next section.")


def render_progress(definition: SurveyDefinition) -> None:
    p = compute_progress(definition.questions, st.session_state.answers.values)
    st.progress(p.percent, text=f"{p.answered_count} of {p.total} answered ({p.percent}%)")


def _on_submit() -> None:
    """Submit click : full validation, then mark the submission in flight.

    Runs before the script, so the page rendered in the same run already
    shows the Submit button disabled.
    """
    check = attempt_submit(st.session_state.wizard, st.session_state.answers)
    st.session_state.answers = check.answers
    st.session_state.wizard = check.wizard
    if not check.ok:
        st.session_state.submit_error = None
        return
    wizard, allowed = begin_submit(check.wizard)
    if allowed:
        st.session_state.wizard = wizard
        st.session_state.submit_error = None


def send_pending(definition: SurveyDefinition) -> None:
    """Send the submission marked in flight, once the page has been drawn."""
    if not st.session_state.wizard.in_flight:
        return
    payload = assemble_submission(definition, st.session_state.answers.values, token=qp_get("t"))
    ip, ua = request_meta()

    with st.spinner("Submitting…"):
        try:
            result = send_submission(payload, save=survey_store.db_save_submission, ip=ip, user_agent=ua)
        finally:
            st.session_state.wizard = end_submit(st.session_state.wizard)
    if result.ok:
        st.session_state.submitted = True
        st.session_state.submit_error = None
    else:
        st.session_state.submit_error = result.message
    st.rerun()


def nav_buttons() -> None:
    wizard: WizardState = st.session_state.wizard
    col1, col2, col3 = st.columns([1, 1, 3])
    with col1:
        if st.button("← Back", disabled=wizard.is_first or wizard.in_flight):
            st.session_state.wizard = go_back(wizard)
            st.rerun()
    with col2:
        if wizard.is_last:
            st.button("Submit", type="primary", disabled=wizard.in_flight, on_click=_on_submit)
        elif st.button("Next →"):
            st.session_state.wizard, st.session_state.answers = go_next(wizard, st.session_state.answers)
            st.rerun()
    with col3:
        if wizard.step_count:
            st.caption(f"Step {wizard.current + 1} of {wizard.step_count}")


# =========================
# Views
# =========================

def survey_view() -> None:
    definition = load_definition()
    if definition is None:
        st.title(APP_TITLE)
        st.error(st.session_state.load_error or "No active survey")
        st.info("There is no survey open for responses right now. Please check back later.")
        return

    if st.session_state.submitted:
        st.title(definition.survey.title or APP_TITLE)
        st.success("Thank you! Your responses have been recorded.")
        st.caption("You can close this page.")
        return

    wizard: WizardState = st.session_state.wizard
    st.title(definition.survey.title or APP_TITLE)
    if definition.survey.description:
        st.markdown(definition.survey.description)
    st.caption(CONFIDENTIAL_NOTE)

    render_sidebar(wizard)
    render_progress(definition)

    step = wizard.current_step
    if step is None:
        st.info("This survey has no questions.")
    else:
        st.subheader(step.section)
        for q in step.questions:
            render_question(q)

    if st.session_state.submit_error:
        st.error(st.session_state.submit_error)

    st.divider()
    nav_buttons()
    send_pending(definition)


def export_section(stats: Dict[str, Any]) -> None:
    survey_id = str((stats.get("survey") or {}).get("id") or "")
    if not survey_id:
        return
    with st.expander("Export answers"):
        if not st.button("Prepare export"):
            return
        definition, msg = survey_store.db_load_survey(survey_id)
        if definition is None:
            st.error(msg)
            return
        respondents, answers, msg = survey_store.db_read_answer_rows(survey_id)
        if msg:
            st.error(msg)
            return
        long_df = response_tables.long_table(definition, respondents, answers)
        wide_df = response_tables.wide_table(definition, long_df)
        st.dataframe(wide_df, use_container_width=True)
        st.download_button(
            "Download respondents (CSV)",
            data=response_tables.csv_bytes(wide_df),
            file_name="survey_respondents.csv",
            mime="text/csv",
        )
        st.download_button(
            "Download answers (CSV)",
            data=response_tables.csv_bytes(long_df),
            file_name="survey_answers.csv",
            mime="text/csv",
        )
        st.download_button(
            "Export to Excel",
            data=response_tables.excel_bytes(long_df, wide_df),
            file_name="survey_export.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )


def admin_dashboard() -> None:
    st.title("Admin Dashboard")
    stats, msg = survey_store.db_read_stats(qp_get("survey"))
    if stats is None:
        st.error(msg or "Failed to load")
    else:
        col1, col2 = st.columns(2)
        with col1:
            st.metric("Total Responses", stats["totals"]["responses"])
        with col2:
            st.caption("Survey")
            st.markdown(f"**{survey_store.survey_title(stats['survey'])}**")

        code = stats.get("breakdown_code", survey_store.DEFAULT_BREAKDOWN_CODE)
        st.subheader(f"{code}: AI Usage Breakdown")
        chart = pd.DataFrame(stats["q7_breakdown"], columns=["label", "count"])
        if chart.empty:
            st.info("No answers yet.")
        else:
            st.bar_chart(chart.set_index("label")["count"])
        export_section(stats)

    if qp_flag("diag"):
        st.subheader("Diagnostics")
        st.json(survey_store.db_debug_info())


# =========================
# Main
# =========================

def main() -> None:
    st.set_page_config(page_title=APP_TITLE, layout="centered")
    init_session()
    if qp_flag("admin"):
        admin_dashboard()
        return
    survey_view()


if __name__ == "__main__":
    main()
