#!/usr/bin/env python3
"""
Test submission generator.

- Generates N complete, valid submissions for a survey definition
- Writes them as JSONL (one submission payload per line)
- Can (optionally) save them through the store, exactly as the app does

Usage :
  python generate_test_submissions.py --n 50 --seed 7 --definition survey.json
  python generate_test_submissions.py --n 50 --survey-id <uuid> --write-db 1

--definition takes a JSON file shaped like the survey loader payload
({"survey": {...}, "questions": [{..., "options": [...]}]}). Without it the
definition is loaded from Supabase (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY).
"""

from __future__ import annotations

import argparse
import json
import logging
import random
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from answer_engine import assemble_submission, field_map_for, has_errors, validate
from survey_model import OTHER, Question, SurveyDefinition, definition_from_payload, other_key


COUNTRIES = ["Kenya", "Nigeria", "Senegal", "Ghana", "South Africa", "Morocco", "Egypt", "Rwanda"]
OTHER_TEXTS = ["Internal scripts", "Vendor platform", "Pilot project", "Spreadsheet macros"]
LONG_TEXTS = [
    "We are assessing the use of AI in audit planning.",
    "No formal policy yet; a working group was set up this year.",
    "Training needs are the main constraint.",
    "Data access from audited entities remains difficult.",
]


# -------------------------
# Helpers
# -------------------------

def pick_k_unique(rng: random.Random, items: List[str], k: int) -> List[str]:
    if k <= 0:
        return []
    if k >= len(items):
        out = items[:]
        rng.shuffle(out)
        return out
    return rng.sample(items, k)


def load_definition(path: Optional[str], survey_id: Optional[str]) -> SurveyDefinition:
    if path:
        with open(path, "r", encoding="utf-8") as f:
            return definition_from_payload(json.load(f))
    import survey_store

    definition, msg = survey_store.db_load_survey(survey_id)
    if definition is None:
        raise SystemExit(f"Survey not loaded : {msg}")
    return definition


def random_value(q: Question, i: int, rng: random.Random, values: Dict[str, Any]) -> Any:
    if q.qtype == "text":
        return f"Sample answer {i}"
    if q.qtype == "longtext":
        return rng.choice(LONG_TEXTS)
    if q.qtype == "number":
        return rng.randint(0, 500)
    choices = [o.value for o in q.options]
    if not choices:
        return None
    if q.qtype == "single":
        v = rng.choice(choices)
        if v == OTHER:
            values[other_key(q.code)] = rng.choice(OTHER_TEXTS)
        return v
    if q.qtype == "multi":
        picked = pick_k_unique(rng, choices, rng.randint(1, min(3, len(choices))))
        if OTHER in picked:
            values[other_key(q.code)] = rng.choice(OTHER_TEXTS)
        return picked
    return None


def generate_values(definition: SurveyDefinition, i: int, rng: random.Random) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for q in definition.questions:
        v = random_value(q, i, rng, values)
        if v is not None:
            values[q.code] = v

    # Institution questions get plausible values
    fmap = field_map_for(definition)
    if fmap.name in values:
        values[fmap.name] = f"Test institution {i:03d}"
    q_country = definition.question_by_code(fmap.country)
    if q_country is not None and q_country.qtype in ("text", "longtext"):
        values[fmap.country] = rng.choice(COUNTRIES)
    total = values.get(fmap.employees_total)
    if isinstance(total, int):
        it = rng.randint(0, max(0, total // 5))
        if fmap.employees_it in values:
            values[fmap.employees_it] = it
        if fmap.employees_it_audit in values:
            values[fmap.employees_it_audit] = rng.randint(0, it)
    return values


def generate_payload(definition: SurveyDefinition, i: int, rng: random.Random, token: Optional[str] = None) -> Dict[str, Any]:
    values = generate_values(definition, i, rng)
    errors = validate(definition.questions, values)
    if has_errors(errors):
        bad = sorted(code for code, e in errors.items() if e)
        raise ValueError(f"generated submission {i} is incomplete : {', '.join(bad)}")
    return assemble_submission(definition, values, token=token)


# -------------------------
# Main
# -------------------------

def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--n", type=int, default=50, help="Number of submissions to generate")
    ap.add_argument("--seed", type=int, default=7, help="Random seed (reproducibility)")
    ap.add_argument("--definition", type=str, default="", help="Survey definition JSON (loader payload shape)")
    ap.add_argument("--survey-id", type=str, default="", help="Survey id to load from Supabase (default : active survey)")
    ap.add_argument("--write-db", type=int, default=0, help="1 = save through Supabase ; 0 = files only")
    ap.add_argument("--out-dir", type=str, default="exports_test", help="Output directory")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    rng = random.Random(args.seed)
    definition = load_definition(args.definition or None, args.survey_id or None)
    if not definition.questions:
        print("Survey has no questions; nothing generated.", file=sys.stderr)
        return 1

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    save = None
    if args.write_db == 1:
        import survey_store
        from submission import send_submission

        def save(payload: Dict[str, Any]):
            return send_submission(payload, save=survey_store.db_save_submission, user_agent="generate_test_submissions")

    jsonl_path = out_dir / "payloads.jsonl"
    failures = 0
    with open(jsonl_path, "w", encoding="utf-8") as f:
        for i in range(1, args.n + 1):
            payload = generate_payload(definition, i, rng)
            f.write(json.dumps(payload, ensure_ascii=False) + "\n")
            if save is not None:
                result = save(payload)
                if not result.ok:
                    failures += 1
                    print(f"submission {i} not saved : {result.message}", file=sys.stderr)

    print(f"OK : {args.n} submissions generated")
    print(f"- JSONL : {jsonl_path}")
    if save is not None:
        print(f"- Supabase : {args.n - failures} saved, {failures} failed")
    return 0 if failures == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
