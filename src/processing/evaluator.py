import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core.schemas import AnalysisResult

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()


def extract_json_object(content: str) -> Optional[Dict[str, Any]]:
    """
    Find the first JSON object in free-form model output, tolerating prose
    and markdown code fences around it. Each opening brace is tried once with
    the C decoder, so unbalanced output stays linear.
    """
    start = content.find("{")
    while start != -1:
        try:
            parsed, _ = _decoder.raw_decode(content, start)
        except (ValueError, RecursionError):
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        start = content.find("{", start + 1)
    return None


def parse_analysis(content: str) -> AnalysisResult:
    """
    Turn model output into an AnalysisResult. Never raises: output without
    usable JSON degrades to a default analysis carrying the raw text.
    """
    text = content or ""
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning(f"No JSON found in LLM response, using defaults: {text[:120]!r}")
        return AnalysisResult.fallback(text.strip())

    try:
        return AnalysisResult.model_validate(parsed)
    except ValidationError as e:
        logger.warning(f"LLM response failed validation, using defaults: {e}")
        return AnalysisResult.fallback(text.strip())
