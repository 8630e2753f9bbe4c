# -*- coding: utf-8 -*-
from dataclasses import dataclass

from palmai_core.settings import settings


@dataclass(frozen=True)
class CompletionCaps:
    max_tokens: int
    temperature: float


@dataclass(frozen=True)
class ChatCaps:
    daily_messages: int
    history_turns: int
    completion: CompletionCaps


# Full structured reading: long output, low creativity
PALM_READING = CompletionCaps(max_tokens=16384, temperature=0.3)

CHAT_REPLY = CompletionCaps(max_tokens=1000, temperature=0.7)


def chat_caps() -> ChatCaps:
    return ChatCaps(
        daily_messages=max(0, settings.DAILY_MESSAGE_LIMIT),
        history_turns=max(0, settings.CHAT_HISTORY_TURNS),
        completion=CHAT_REPLY,
    )
