"""
Export tables built from stored answers.

- long : one row per stored answer record, with question code and option label
- wide : one row per respondent, one column per question code
"""

from __future__ import annotations

import io
from typing import Any, Dict, List

import pandas as pd

from survey_model import SurveyDefinition

LONG_COLUMNS = [
    "respondent_id",
    "submitted_at",
    "question_code",
    "section",
    "qtype",
    "option_value",
    "option_label",
    "value_text",
    "value_number",
]


def long_table(definition: SurveyDefinition, respondents: List[Dict[str, Any]], answers: List[Dict[str, Any]]) -> pd.DataFrame:
    q_by_id = {q.id: q for q in definition.questions}
    o_by_id = {o.id: o for q in definition.questions for o in q.options}
    order = {q.id: i for i, q in enumerate(definition.questions)}
    submitted = {str(r.get("id")): r.get("created_at") for r in respondents}
    r_order = {str(r.get("id")): i for i, r in enumerate(respondents)}

    rows = []
    for a in answers:
        qid = str(a.get("question_id"))
        q = q_by_id.get(qid)
        opt = o_by_id.get(str(a.get("option_id"))) if a.get("option_id") else None
        rid = str(a.get("respondent_id"))
        rows.append({
            "respondent_id": rid,
            "submitted_at": submitted.get(rid),
            "question_code": q.code if q else qid,
            "section": q.section if q else "",
            "qtype": q.qtype if q else "",
            "option_value": opt.value if opt else None,
            "option_label": opt.label if opt else None,
            "value_text": a.get("value_text"),
            "value_number": a.get("value_number"),
            "_r": r_order.get(rid, len(r_order)),
            "_q": order.get(qid, len(order)),
        })

    if not rows:
        return pd.DataFrame(columns=LONG_COLUMNS)
    df = pd.DataFrame(rows).sort_values(["_r", "_q"], kind="stable")
    return df[LONG_COLUMNS].reset_index(drop=True)


def _cell(row: pd.Series) -> str:
    label = row.get("option_label")
    text = row.get("value_text")
    number = row.get("value_number")
    if pd.notna(label) and label:
        if pd.notna(text) and text:
            return f"{label} : {text}"
        return str(label)
    if pd.notna(number):
        n = float(number)
        return str(int(n)) if n.is_integer() else str(n)
    if pd.notna(text):
        return str(text)
    return ""


def wide_table(definition: SurveyDefinition, long_df: pd.DataFrame) -> pd.DataFrame:
    if long_df.empty:
        return pd.DataFrame(columns=["respondent_id", "submitted_at"])

    tmp = long_df.assign(cell=long_df.apply(_cell, axis=1))
    wide = (
        tmp.groupby(["respondent_id", "submitted_at", "question_code"], sort=False, dropna=False)["cell"]
        .agg(lambda s: "; ".join(x for x in s if x))
        .unstack("question_code")
    )
    present = set(wide.columns)
    cols = [q.code for q in definition.questions if q.code in present]
    cols += [c for c in wide.columns if c not in cols]
    return wide.reindex(columns=cols).fillna("").reset_index()


def csv_bytes(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8-sig")


def excel_bytes(long_df: pd.DataFrame, wide_df: pd.DataFrame) -> bytes:
    out = io.BytesIO()
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        wide_df.to_excel(writer, sheet_name="respondents", index=False)
        long_df.to_excel(writer, sheet_name="answers", index=False)
    out.seek(0)
    return out.getvalue()
