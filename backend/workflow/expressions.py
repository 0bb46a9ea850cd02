"""Expression engine — variable substitution and simple conditions.

Templates reference execution data with ``{{name}}`` tokens. A token is
resolved against the execution's ``variables`` first and its ``context``
second; ``{{context.name}}`` reads the context explicitly. Tokens that
resolve to nothing are left verbatim so a half-filled template is still
readable in logs.

Conditions are deliberately tiny: one binary operator out of
``==``, ``!=``, ``>``, ``<`` (checked in that order against the substituted
text). Anything else evaluates to ``True``.
"""

import json
import re
from typing import Any, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(r"\{\{(\w+)\}\}")
_CONTEXT_TOKEN_RE = re.compile(r"\{\{context\.(\w+)\}\}")

# Probe order matters: "==" must win over the single-char operators.
OPERATORS = ("==", "!=", ">", "<")


def _format_value(value: Any) -> str:
    """Render a substituted value the way it would appear in JSON text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _lookup(name: str, *sources: Optional[Mapping[str, Any]]) -> Any:
    for source in sources:
        if source and source.get(name) is not None:
            return source[name]
    return None


def substitute(
    text: Any,
    variables: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Replace ``{{name}}`` and ``{{context.name}}`` tokens in ``text``.

    Non-string input is returned unchanged. Never raises.
    """
    if not isinstance(text, str) or "{{" not in text:
        return text

    def _replace_plain(match: re.Match) -> str:
        value = _lookup(match.group(1), variables, context)
        return match.group(0) if value is None else _format_value(value)

    def _replace_context(match: re.Match) -> str:
        value = _lookup(match.group(1), context)
        return match.group(0) if value is None else _format_value(value)

    result = _TOKEN_RE.sub(_replace_plain, text)
    return _CONTEXT_TOKEN_RE.sub(_replace_context, result)


def substitute_all(
    value: Any,
    variables: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Recursively substitute tokens inside nested dicts and lists."""
    if isinstance(value, str):
        return substitute(value, variables, context)
    if isinstance(value, dict):
        return {k: substitute_all(v, variables, context) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_all(v, variables, context) for v in value]
    return value


def _to_number(raw: str) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def evaluate(
    condition: Optional[str],
    variables: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Evaluate a single binary condition after substitution.

    ``>`` and ``<`` compare numerically (non-numeric operands are false),
    ``==`` and ``!=`` compare the trimmed strings. A condition without a
    recognized operator, or an empty one, is true.
    """
    if condition is None:
        return True
    text = substitute(str(condition), variables, context)
    if not text.strip():
        return True

    for op in OPERATORS:
        if op not in text:
            continue
        left, right = (part.strip() for part in text.split(op, 1))
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        lnum, rnum = _to_number(left), _to_number(right)
        if lnum is None or rnum is None:
            logger.debug("Non-numeric comparison", condition=text, operator=op)
            return False
        return lnum > rnum if op == ">" else lnum < rnum

    return True
