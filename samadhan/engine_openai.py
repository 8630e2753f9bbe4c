# samadhan/engine_openai.py
import logging
from typing import Optional, Dict, Any, List

from openai import OpenAI, OpenAIError

from palmai_core.settings import settings
from samadhan.limits import CompletionCaps

log = logging.getLogger("completion")

_client: Optional[OpenAI] = None


class CompletionError(RuntimeError):
    """The completion API failed, timed out, or returned no content."""


def is_configured() -> bool:
    return bool(settings.OPENAI_API_KEY)


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        if not is_configured():
            raise CompletionError("OPENAI_API_KEY is not configured")
        _client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SECONDS)
    return _client


def generate(*, messages: List[Dict[str, str]], caps: CompletionCaps,
             model: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> str:
    """One chat-completions call; returns the first choice's text or raises CompletionError."""
    params: Dict[str, Any] = {
        "model": model or settings.OPENAI_MODEL,
        "messages": messages,
        "max_tokens": caps.max_tokens,
        "temperature": caps.temperature,
    }
    if extra:
        params.update(extra)
    client = _get_client()
    try:
        response = client.chat.completions.create(**params)
    except OpenAIError as e:
        log.error("completion call failed: %s", e)
        raise CompletionError(str(e)) from e

    choice = (response.choices or [None])[0]
    content = choice.message.content if choice is not None else None
    if not content:
        raise CompletionError("completion returned no content")
    usage = getattr(response, "usage", None)
    log.info(
        "completion ok model=%s chars=%d tokens=%s finish=%s",
        params["model"], len(content), getattr(usage, "total_tokens", None), choice.finish_reason,
    )
    return content
