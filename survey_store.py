"""
Storage : Supabase (Postgres tables + RPC).

Every db_* function takes an optional client (tests pass a fake one) and
falls back to the process-wide client. Backend failures are caught here and
returned as (result, message) so the UI can show them without crashing.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import streamlit as st
from supabase import create_client

from survey_model import SurveyDefinition, shape_definition, survey_from_row

logger = logging.getLogger(__name__)

SUPABASE_SURVEYS_TABLE = os.environ.get("SUPABASE_SURVEYS_TABLE", "surveys")
SUPABASE_QUESTIONS_TABLE = os.environ.get("SUPABASE_QUESTIONS_TABLE", "questions")
SUPABASE_OPTIONS_TABLE = os.environ.get("SUPABASE_OPTIONS_TABLE", "question_options")
SUPABASE_INSTITUTIONS_TABLE = os.environ.get("SUPABASE_INSTITUTIONS_TABLE", "institutions")
SUPABASE_RESPONDENTS_TABLE = os.environ.get("SUPABASE_RESPONDENTS_TABLE", "respondents")
SUPABASE_ANSWERS_TABLE = os.environ.get("SUPABASE_ANSWERS_TABLE", "answers")
SUPABASE_TOKENS_TABLE = os.environ.get("SUPABASE_TOKENS_TABLE", "invite_tokens")

DEFAULT_BREAKDOWN_CODE = "Q7"
NOT_CONFIGURED = "Supabase not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)."


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =========================
# Configuration
# =========================

def _sb_get(name: str) -> Optional[str]:
    """Value from Streamlit secrets (direct or nested section), else env."""
    try:
        secrets_obj = getattr(st, "secrets", None)
        if secrets_obj is not None:
            try:
                if name in secrets_obj:
                    v = secrets_obj[name]
                    if v not in (None, ""):
                        return str(v)
            except Exception:
                # no secrets.toml at all
                secrets_obj = None
            if secrets_obj is not None:
                try:
                    d = secrets_obj.to_dict()
                except Exception:
                    d = {}
                for _k, _v in d.items():
                    if isinstance(_v, dict) and _v.get(name) not in (None, ""):
                        return str(_v.get(name))
    except Exception:
        pass

    v = os.environ.get(name, None)
    if v not in (None, ""):
        return str(v)
    return None


def _sb_url() -> Optional[str]:
    return _sb_get("SUPABASE_URL") or _sb_get("NEXT_PUBLIC_SUPABASE_URL")


def _sb_key() -> Optional[str]:
    return _sb_get("SUPABASE_SERVICE_ROLE_KEY") or _sb_get("SUPABASE_SERVICE_KEY") or _sb_get("SUPABASE_ANON_KEY")


@st.cache_resource(show_spinner=False)
def _sb_client():
    """Supabase client cached per-process (None when not configured)."""
    url = _sb_url()
    key = _sb_key()
    if not url or not key:
        return None
    try:
        return create_client(url, key)
    except Exception as e:
        logger.warning("supabase client creation failed: %s", e)
        return None


def _client(sb):
    return sb if sb is not None else _sb_client()


def _data(r) -> List[Dict[str, Any]]:
    data = getattr(r, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return data if isinstance(data, list) else []


# =========================
# Survey definition
# =========================

def db_select_survey(selector: Optional[str] = None, sb=None) -> Tuple[Optional[Dict[str, Any]], str]:
    """Explicit selector > SURVEY_ID setting > newest active survey."""
    sb = _client(sb)
    if sb is None:
        return (None, NOT_CONFIGURED)
    survey_id = (selector or "").strip() or _sb_get("SURVEY_ID")
    try:
        q = sb.table(SUPABASE_SURVEYS_TABLE).select("*")
        if survey_id:
            q = q.eq("id", survey_id).limit(1)
        else:
            q = q.eq("is_active", True).order("created_at", desc=True).limit(1)
        rows = _data(q.execute())
    except Exception as e:
        logger.warning("survey lookup failed: %s", e)
        return (None, str(e))
    if not rows:
        return (None, "No active survey")
    return (rows[0], "")


def db_load_survey(selector: Optional[str] = None, sb=None) -> Tuple[Optional[SurveyDefinition], str]:
    """Survey plus ordered questions with their ordered options embedded."""
    sb = _client(sb)
    survey_row, msg = db_select_survey(selector, sb=sb)
    if survey_row is None:
        return (None, msg)

    try:
        questions = _data(
            sb.table(SUPABASE_QUESTIONS_TABLE)
            .select("*")
            .eq("survey_id", survey_row.get("id"))
            .order("order_index")
            .execute()
        )
        qids = [q.get("id") for q in questions]
        options: List[Dict[str, Any]] = []
        if qids:
            options = _data(
                sb.table(SUPABASE_OPTIONS_TABLE)
                .select("*")
                .in_("question_id", qids)
                .order("order_index")
                .execute()
            )
    except Exception as e:
        logger.warning("question/option load failed for survey %s: %s", survey_row.get("id"), e)
        return (None, str(e))

    return (shape_definition(survey_row, questions, options), "")


# =========================
# Submission
# =========================

def db_check_token(token: str, survey_id: str, sb) -> Tuple[bool, str]:
    """Invite tokens are single-use and tied to one survey."""
    invalid = "Invalid or used token"
    try:
        rows = _data(sb.table(SUPABASE_TOKENS_TABLE).select("*").eq("token", token).limit(1).execute())
    except Exception as e:
        logger.warning("token lookup failed: %s", e)
        return (False, invalid)
    if not rows:
        return (False, invalid)
    tok = rows[0]
    if tok.get("used_at") or str(tok.get("survey_id")) != str(survey_id):
        return (False, invalid)
    return (True, "")


def _answer_row(respondent_id: Any, a: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "respondent_id": respondent_id,
        "question_id": a.get("question_id"),
        "option_id": a.get("option_id") or None,
        "value_text": a.get("value_text") or None,
        "value_number": a.get("value_number"),
    }


def db_save_submission(
    payload: Dict[str, Any],
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    sb=None,
) -> Tuple[bool, str]:
    """Persist one submission : institution, respondent, answers, token use."""
    payload = payload or {}
    survey_id = payload.get("survey_id")
    answers = payload.get("answers")
    institution = payload.get("institution") or {}
    token = payload.get("token") or None

    if not survey_id or not isinstance(answers, list):
        return (False, "Missing payload")

    sb = _client(sb)
    if sb is None:
        return (False, NOT_CONFIGURED)

    if token:
        ok, msg = db_check_token(token, survey_id, sb)
        if not ok:
            return (False, msg)

    institution_id = None
    if institution.get("name"):
        try:
            inst = _data(
                sb.table(SUPABASE_INSTITUTIONS_TABLE)
                .insert({
                    "name": institution.get("name"),
                    "country": institution.get("country") or None,
                    "employees_total": institution.get("employees_total"),
                    "employees_it": institution.get("employees_it"),
                    "employees_it_audit": institution.get("employees_it_audit"),
                    "has_ai_unit": institution.get("has_ai_unit"),
                })
                .execute()
            )
            institution_id = inst[0].get("id") if inst else None
        except Exception as e:
            # The respondent row is still written without an institution link
            logger.warning("institution insert failed: %s", e)

    try:
        resp = _data(
            sb.table(SUPABASE_RESPONDENTS_TABLE)
            .insert({
                "survey_id": survey_id,
                "institution_id": institution_id,
                "ip_inferred": ip,
                "user_agent": user_agent,
                "token": token,
            })
            .execute()
        )
    except Exception as e:
        logger.warning("respondent insert failed: %s", e)
        return (False, str(e))
    if not resp:
        return (False, "Respondent not created")
    respondent_id = resp[0].get("id")

    rows = [_answer_row(respondent_id, a) for a in answers]
    if rows:
        try:
            sb.table(SUPABASE_ANSWERS_TABLE).insert(rows).execute()
        except Exception as e:
            logger.warning("answers insert failed for respondent %s: %s", respondent_id, e)
            return (False, str(e))

    if token:
        try:
            sb.table(SUPABASE_TOKENS_TABLE).update({"used_at": now_utc_iso()}).eq("token", token).execute()
        except Exception as e:
            logger.warning("token %s not marked used: %s", token, e)

    logger.info("submission saved: survey=%s respondent=%s answers=%d", survey_id, respondent_id, len(rows))
    return (True, "")


# =========================
# Aggregates (admin)
# =========================

def _count_from_rpc(data: Any) -> int:
    if isinstance(data, list):
        data = data[0] if data else 0
    if isinstance(data, dict):
        data = data.get("count", 0)
    try:
        return int(data or 0)
    except (TypeError, ValueError):
        return 0


def db_count_responses(survey_id: str, sb) -> int:
    try:
        r = sb.rpc("count_responses", {"s_id": survey_id}).execute()
        return _count_from_rpc(getattr(r, "data", None))
    except Exception as e:
        logger.warning("count_responses failed: %s", e)
        return 0


def db_breakdown(question_code: str, sb) -> List[Dict[str, Any]]:
    try:
        r = sb.rpc("breakdown_single_choice", {"question_code": question_code}).execute()
        rows = _data(r)
    except Exception as e:
        logger.warning("breakdown_single_choice(%s) failed: %s", question_code, e)
        return []
    out = []
    for row in rows:
        try:
            count = int(row.get("count") or 0)
        except (TypeError, ValueError):
            count = 0
        out.append({"label": str(row.get("label") or ""), "count": count})
    return out


def db_read_stats(selector: Optional[str] = None, sb=None) -> Tuple[Optional[Dict[str, Any]], str]:
    """{survey, totals: {responses}, q7_breakdown: [{label, count}]}."""
    sb = _client(sb)
    survey_row, msg = db_select_survey(selector, sb=sb)
    if survey_row is None:
        return (None, msg if msg != "No active survey" else "No survey")
    code = _sb_get("STATS_BREAKDOWN_CODE") or DEFAULT_BREAKDOWN_CODE
    return (
        {
            "survey": survey_row,
            "totals": {"responses": db_count_responses(survey_row.get("id"), sb)},
            "q7_breakdown": db_breakdown(code, sb),
            "breakdown_code": code,
        },
        "",
    )


def db_read_answer_rows(survey_id: str, sb=None) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], str]:
    """Raw respondents and answers of one survey, for export."""
    sb = _client(sb)
    if sb is None:
        return ([], [], NOT_CONFIGURED)
    try:
        respondents = _data(
            sb.table(SUPABASE_RESPONDENTS_TABLE)
            .select("*")
            .eq("survey_id", survey_id)
            .order("created_at")
            .execute()
        )
        rids = [r.get("id") for r in respondents]
        answers: List[Dict[str, Any]] = []
        if rids:
            answers = _data(
                sb.table(SUPABASE_ANSWERS_TABLE).select("*").in_("respondent_id", rids).execute()
            )
    except Exception as e:
        logger.warning("answer export failed for survey %s: %s", survey_id, e)
        return ([], [], str(e))
    return (respondents, answers, "")


# =========================
# Diagnostics
# =========================

def env_check() -> Dict[str, Any]:
    url = _sb_url() or ""
    try:
        host = urlparse(url).hostname if url else None
    except ValueError:
        host = None
    return {
        "supabase_url_host": host,
        "has_service_role_key": bool(_sb_get("SUPABASE_SERVICE_ROLE_KEY")),
        "survey_id_env": _sb_get("SURVEY_ID"),
    }


def app_version() -> Dict[str, Any]:
    return {
        "version": _sb_get("APP_VERSION") or "local-dev",
        "branch": _sb_get("APP_BRANCH") or "unknown",
        "checked_at": now_utc_iso(),
    }


def db_debug_info(sb=None) -> Dict[str, Any]:
    info: Dict[str, Any] = {"env": env_check(), "version": app_version()}
    sb = _client(sb)
    if sb is None:
        info["error"] = NOT_CONFIGURED
        return info
    try:
        rows = _data(
            sb.table(SUPABASE_SURVEYS_TABLE)
            .select("id, title, is_active, created_at")
            .order("created_at", desc=True)
            .execute()
        )
    except Exception as e:
        info["error"] = str(e)
        return info
    active = next((r for r in rows if r.get("is_active")), None)
    info["counts"] = {"surveys": len(rows)}
    info["active_survey"] = active
    info["newest_survey"] = rows[0] if rows else None
    return info


def survey_title(row: Optional[Dict[str, Any]]) -> str:
    if not row:
        return ""
    return survey_from_row(row).title
