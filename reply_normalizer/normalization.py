# reply_normalizer/normalization.py
"""Response normalization for raw completion text.

Models often wrap their answer in extra structure: markdown code fences,
JSON envelopes (sometimes re-encoded several times as JSON strings), emphasis
markers and DeepSeek conversation-boundary tokens. This module peels those
layers off and always hands back something a user can read.

The pipeline runs in a fixed order:
1. Emptiness guard
2. Code-fence stripping (one level)
3. Bounded envelope unwrapping
4. Markdown emphasis stripping
5. Artifact token stripping
6. Final emptiness / null-token guard
"""
import json
import logging
import re
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)


# ------------------- Constants -------------------

FALLBACK_MESSAGE = (
    "I apologize, but I couldn't generate a proper response. "
    "Can you send that message again?"
)

# Syntactically non-empty strings that still mean "no answer"
NULL_LIKE_TOKENS = frozenset({'""', "''", "{}", "[]", "null", "undefined"})

# DeepSeek sentinel tokens, full-width and ASCII bracket variants
ARTIFACT_TOKENS = (
    "<｜begin▁of▁sentence｜>",
    "<|begin_of_sentence|>",
    "<｜end▁of▁sentence｜>",
    "<|end_of_sentence|>",
)

MAX_UNWRAP_ATTEMPTS = 5

CODE_FENCE = "```"

_NOT_JSON = object()

# Whitespace as JavaScript trim() sees it, which includes the byte-order mark
_TRIM_RE = re.compile(r"\A[\s\ufeff]+|[\s\ufeff]+\Z")


# ------------------- Helpers -------------------

def _trim(text: str) -> str:
    return _TRIM_RE.sub("", text)


def _load_json(text: str) -> Any:
    """Parse text as JSON, returning the _NOT_JSON sentinel on failure."""
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return _NOT_JSON


def _dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _looks_like_json_container(text: str) -> bool:
    return (text.startswith("{") and text.endswith("}")) or (
        text.startswith("[") and text.endswith("]")
    )


def _single_payload(parsed: Any) -> Tuple[bool, Any]:
    """Return (found, value) for the payload of an envelope.

    An ``answer`` key wins. Without one, an object with exactly one key (or a
    one-element array) is assumed to carry the payload in that single slot.
    """
    if isinstance(parsed, dict):
        if "answer" in parsed:
            return True, parsed["answer"]
        if len(parsed) == 1:
            return True, next(iter(parsed.values()))
    elif isinstance(parsed, list) and len(parsed) == 1:
        return True, parsed[0]
    return False, None


# ------------------- Pipeline Stages -------------------

def strip_code_fence(text: str) -> str:
    """Drop the first and last line when the text opens with a code fence.

    Only one level of fencing is removed.
    """
    text = _trim(text)
    if not text.startswith(CODE_FENCE):
        return text
    lines = text.split("\n")
    return _trim("\n".join(lines[1:-1]))


def unwrap_envelopes(text: str, max_attempts: int = MAX_UNWRAP_ATTEMPTS) -> str:
    """Peel JSON envelopes off a response, at most ``max_attempts`` times.

    Each attempt parses the working string once. Text that is not JSON, or a
    JSON value with no recognizable payload, is returned as-is. When the
    ceiling is reached the last working string is returned rather than
    raising, so deeply nested input degrades to best-effort text.

    Args:
        text: Working string, usually the output of strip_code_fence
        max_attempts: Upper bound on JSON parse attempts

    Returns:
        The unwrapped text
    """
    answer = text
    attempts = 0

    while attempts < max_attempts:
        attempts += 1

        parsed = _load_json(answer)
        if parsed is _NOT_JSON:
            break

        if isinstance(parsed, (dict, list)):
            found, extracted = _single_payload(parsed)
            if not found:
                break
            if isinstance(extracted, str):
                answer = _trim(extracted)
                if _looks_like_json_container(answer):
                    continue
                break
            if extracted is None or isinstance(extracted, (dict, list)):
                # null re-encodes to "null", which the final guard rejects
                try:
                    answer = _dump_json(extracted)
                except RecursionError:
                    break
                continue
            # numbers and booleans leave the working string untouched
            break

        if isinstance(parsed, str):
            answer = _trim(parsed)
            if _looks_like_json_container(answer):
                continue

        break
    else:
        logger.debug("Envelope unwrapping stopped after %d attempts", max_attempts)

    return answer


def strip_markdown(text: str) -> str:
    """Remove bold and italic asterisks. Other markdown is left alone."""
    return text.replace("**", "").replace("*", "")


def strip_artifacts(text: str) -> str:
    """Remove every DeepSeek boundary token and trim the result."""
    for artifact in ARTIFACT_TOKENS:
        text = text.replace(artifact, "")
    return _trim(text)


def is_null_like(text: Optional[str]) -> bool:
    """True when text is empty, whitespace or a null-like token after trimming."""
    if not text:
        return True
    stripped = _trim(text)
    return not stripped or stripped in NULL_LIKE_TOKENS


# ------------------- Main Interface -------------------

def normalize_response(raw: Optional[str]) -> str:
    """Turn a raw completion into a clean, display-ready answer.

    Never raises. Whenever no usable answer survives the pipeline the
    canonical FALLBACK_MESSAGE is returned instead.

    Args:
        raw: Raw completion text as returned by the provider

    Returns:
        Normalized answer, never empty and never a null-like token
    """
    if not raw or not _trim(raw):
        return FALLBACK_MESSAGE

    answer = strip_code_fence(raw)
    answer = unwrap_envelopes(answer)
    answer = strip_markdown(answer)
    answer = strip_artifacts(answer)

    if is_null_like(answer):
        logger.debug("No usable answer recovered, returning fallback message")
        return FALLBACK_MESSAGE

    return answer
