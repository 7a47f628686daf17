# reply_normalizer/fetcher.py
"""Completion fetching and the fetch -> normalize entry point.

Supports:
- DeepSeek chat completions over plain HTTP (requests)
- OpenAI-compatible models through the openai SDK

The fetcher only delivers the raw text of the first completion choice or
raises. Cleaning that text up is the job of normalization.normalize_response;
it is never called when the fetch fails.
"""
import math
import time
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Dict, Any, Optional
from functools import wraps

import openai
import requests

from .config import (
    APP_REFERER,
    APP_TITLE,
    DEEPSEEK_API_KEY,
    DEEPSEEK_API_URL,
    DEFAULT_MODEL,
    MODELS,
    OPENAI_API_KEY,
    REQUEST_TIMEOUT,
    RETRY_CONFIG,
    SYSTEM_PROMPT,
)
from .normalization import FALLBACK_MESSAGE, normalize_response
from .api_logger import get_api_logger, APILogger

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ------------------- Custom Exceptions -------------------

class APIError(Exception):
    """Base exception for API-related errors."""
    pass


class FetchError(APIError):
    """Raised when the completion service answers with a non-success status."""
    def __init__(self, message: str, status_code: Optional[int] = None, detail: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class RateLimitError(FetchError):
    """Raised when API rate limit is exceeded."""
    def __init__(self, message: str, retry_after: float = 60, detail: str = ""):
        super().__init__(message, status_code=429, detail=detail)
        self.retry_after = retry_after


class ModelUnavailableError(FetchError):
    """Raised when a model endpoint is unavailable."""
    def __init__(self, message: str, model: str, status_code: Optional[int] = 503, detail: str = ""):
        super().__init__(message, status_code=status_code, detail=detail)
        self.model = model


# Failures worth another attempt; everything else propagates immediately
TRANSIENT_ERRORS = (
    ModelUnavailableError,
    requests.ConnectionError,
    requests.Timeout,
    openai.APIConnectionError,
)


# ------------------- Retry Logic -------------------

def retry_with_exponential_backoff(
    max_retries: Optional[int] = None,
    initial_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    exponential_base: Optional[int] = None,
):
    """Decorator for retrying transient API failures with exponential backoff."""
    max_retries = RETRY_CONFIG["max_retries"] if max_retries is None else max_retries
    initial_delay = RETRY_CONFIG["initial_delay"] if initial_delay is None else initial_delay
    max_delay = RETRY_CONFIG["max_delay"] if max_delay is None else max_delay
    exponential_base = RETRY_CONFIG["exponential_base"] if exponential_base is None else exponential_base

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except RateLimitError as e:
                    last_exception = e
                    if attempt == max_retries:
                        break
                    wait_time = min(e.retry_after, max_delay)
                    logger.warning(
                        f"Rate limit hit. Waiting {wait_time}s before retry "
                        f"(attempt {attempt + 1}/{max_retries + 1})"
                    )
                    time.sleep(wait_time)
                except TRANSIENT_ERRORS as e:
                    last_exception = e
                    if attempt == max_retries:
                        break
                    logger.warning(
                        f"API call failed: {e}. Retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries + 1})"
                    )
                    time.sleep(delay)
                    delay = min(delay * exponential_base, max_delay)

            raise last_exception
        return wrapper
    return decorator


# ------------------- Provider-Specific Implementations -------------------

def _first_choice_content(data: Any) -> str:
    """Pull choices[0].message.content out of a completion body, or ""."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content.strip() if isinstance(content, str) else ""


def _parse_retry_after(value: Optional[str], default: float = 60.0) -> float:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else default
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if retry_at is None:
        return default
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


@retry_with_exponential_backoff()
def _deepseek_chat(messages: List[Dict], model_cfg: dict) -> str:
    """POST to the DeepSeek chat-completions endpoint and return the content."""
    if not DEEPSEEK_API_KEY:
        raise APIError("DEEPSEEK_API_KEY environment variable not set")

    headers = {
        "Authorization": f"Bearer {DEEPSEEK_API_KEY}",
        "Content-Type": "application/json",
        "HTTP-Referer": APP_REFERER,
        "X-Title": APP_TITLE,
    }
    payload = {
        "model": model_cfg["model_name"],
        "messages": messages,
        "max_tokens": model_cfg["max_tokens"],
        "temperature": model_cfg["temperature"],
        "top_p": model_cfg["top_p"],
    }

    response = requests.post(DEEPSEEK_API_URL, headers=headers, json=payload, timeout=REQUEST_TIMEOUT)

    if not response.ok:
        body = response.text
        logger.error(f"DeepSeek API error: {body}")
        message = f"DeepSeek failed: {response.status_code}"
        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitError(message, retry_after=retry_after, detail=body)
        if response.status_code == 503:
            raise ModelUnavailableError(message, model_cfg["model_name"], detail=body)
        raise FetchError(message, status_code=response.status_code, detail=body)

    try:
        data = response.json()
    except ValueError as e:
        raise FetchError(
            f"DeepSeek returned a non-JSON body: {e}",
            status_code=response.status_code,
            detail=response.text,
        ) from e

    return _first_choice_content(data)


@retry_with_exponential_backoff()
def _openai_chat(messages: List[Dict], model_cfg: dict) -> str:
    """Call an OpenAI-compatible ChatCompletion and return the content."""
    if not OPENAI_API_KEY:
        raise APIError("OPENAI_API_KEY environment variable not set")

    client = openai.OpenAI(api_key=OPENAI_API_KEY, timeout=REQUEST_TIMEOUT, max_retries=0)

    try:
        resp = client.chat.completions.create(
            model=model_cfg["model_name"],
            messages=messages,
            max_tokens=model_cfg["max_tokens"],
            temperature=model_cfg["temperature"],
            top_p=model_cfg["top_p"],
        )
    except openai.RateLimitError as e:
        raise RateLimitError(str(e), retry_after=60, detail=e.message) from e
    except openai.NotFoundError as e:
        raise ModelUnavailableError(str(e), model_cfg["model_name"], status_code=e.status_code, detail=e.message) from e
    except openai.APIStatusError as e:
        raise FetchError(f"OpenAI failed: {e.status_code}", status_code=e.status_code, detail=e.message) from e

    if not resp.choices:
        return ""
    content = resp.choices[0].message.content
    return content.strip() if content else ""


# ------------------- Main Interface -------------------

def build_messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def _resolve_model(model_key: str) -> dict:
    if model_key not in MODELS:
        raise APIError(f"Unknown model: {model_key}. Available: {list(MODELS.keys())}")
    return MODELS[model_key]


def _call_model(model_cfg: dict, messages: List[Dict]) -> str:
    """Route the call to the appropriate provider."""
    provider = model_cfg["provider"]
    if provider == "deepseek":
        return _deepseek_chat(messages, model_cfg)
    if provider == "openai":
        return _openai_chat(messages, model_cfg)
    raise APIError(f"Unknown provider: {provider}")


def fetch_completion(prompt: str, model_key: str = DEFAULT_MODEL) -> str:
    """Send a prompt to any configured model and return the raw first choice.

    Returns "" when the service answers without content.

    Raises:
        APIError: If the key is missing or the model is unknown
        FetchError: If the service answers with a non-success status
    """
    return _call_model(_resolve_model(model_key), build_messages(prompt))


def query_deepseek(prompt: str, model_key: str = DEFAULT_MODEL) -> str:
    """Like fetch_completion, restricted to models served by DeepSeek."""
    model_cfg = _resolve_model(model_key)
    if model_cfg["provider"] != "deepseek":
        raise APIError(f"Model {model_key} is not a DeepSeek model")
    return _call_model(model_cfg, build_messages(prompt))


def get_answer(
    prompt: str,
    model_key: str = DEFAULT_MODEL,
    normalize: bool = True,
    api_logger: Optional[APILogger] = None,
) -> str:
    """Fetch a completion for prompt and return the display-ready answer.

    Args:
        prompt: The user's prompt
        model_key: Key identifying the model in MODELS config
        normalize: Whether to normalize the raw output (default True)
        api_logger: Optional API logger instance

    Returns:
        The normalized answer (or the raw output when normalize is False)

    Raises:
        APIError: If the call fails after retries; the normalizer is not run
    """
    model_cfg = _resolve_model(model_key)
    messages = build_messages(prompt)

    if api_logger is None:
        api_logger = get_api_logger()

    call_id = api_logger.log_call_start(
        provider=model_cfg["provider"],
        model=model_cfg["model_name"],
        model_key=model_key,
        messages=messages,
        parameters={
            "max_tokens": model_cfg["max_tokens"],
            "temperature": model_cfg["temperature"],
            "top_p": model_cfg["top_p"],
        },
    )

    start_time = time.time()

    try:
        raw = _call_model(model_cfg, messages)
    except Exception as e:
        api_logger.log_call_failure(
            call_id=call_id,
            error=str(e),
            latency_ms=int((time.time() - start_time) * 1000),
            status_code=getattr(e, "status_code", None),
        )
        raise

    latency_ms = int((time.time() - start_time) * 1000)

    answer = normalize_response(raw) if normalize else raw

    api_logger.log_call_success(
        call_id=call_id,
        response=raw,
        latency_ms=latency_ms,
        normalized=answer if normalize else None,
        fallback_used=normalize and answer == FALLBACK_MESSAGE,
    )

    return answer


def get_available_models() -> Dict[str, Dict[str, Any]]:
    """Return dictionary of available models and their configurations."""
    return MODELS.copy()


def get_models_by_provider(provider: str) -> Dict[str, Dict[str, Any]]:
    """Return models filtered by provider ('deepseek' or 'openai')."""
    return {k: v for k, v in MODELS.items() if v["provider"] == provider}
