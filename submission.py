"""
Submission gateway : JSON-safe payload, one send, a success flag and a message.

Answer state is never touched here; on failure the caller keeps every value
so the respondent can submit again.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Failed to submit"

SaveFn = Callable[..., Tuple[bool, str]]


@dataclass(frozen=True)
class SubmissionResult:
    ok: bool
    message: str = ""


def json_safe(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Replace non-finite numbers (NaN from non-numeric number input) by null."""
    def _clean(v: Any, path: str) -> Any:
        if isinstance(v, float) and not math.isfinite(v):
            logger.warning("non-numeric value at %s sent as null", path)
            return None
        if isinstance(v, dict):
            return {k: _clean(x, f"{path}.{k}") for k, x in v.items()}
        if isinstance(v, (list, tuple)):
            return [_clean(x, f"{path}[{i}]") for i, x in enumerate(v)]
        return v

    cleaned = _clean(payload, "payload")
    # Fails loudly on anything the backend could not encode
    json.dumps(cleaned, allow_nan=False)
    return cleaned


def send_submission(
    payload: Dict[str, Any],
    save: SaveFn,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SubmissionResult:
    try:
        body = json_safe(payload)
    except (TypeError, ValueError) as e:
        logger.warning("submission payload not serializable: %s", e)
        return SubmissionResult(ok=False, message=GENERIC_FAILURE)

    try:
        ok, msg = save(body, ip=ip, user_agent=user_agent)
    except Exception as e:
        logger.warning("submission transport failure: %s", e)
        return SubmissionResult(ok=False, message=str(e) or GENERIC_FAILURE)

    if ok:
        return SubmissionResult(ok=True)
    return SubmissionResult(ok=False, message=(msg or "").strip() or GENERIC_FAILURE)
