"""Classification of spoken commands and extraction of system actions.

Matching is plain substring search on the lower-cased transcript. The
classifier is injected into the service, so a smarter one can replace it.
"""

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

SHUTDOWN_PHRASES = (
    "shutdown",
    "power off",
    "turn off",
    "exit",
    "quit",
    "stop jarvis",
    "jarvis shutdown",
    "jarvis stop",
    "jarvis exit",
)

EMERGENCY_PHRASES = (
    "emergency stop",
    "emergency shutdown",
    "force stop",
    "abort",
    "jarvis emergency",
)


class CommandIntent(enum.Enum):
    EMERGENCY = "EMERGENCY"
    SHUTDOWN = "SHUTDOWN"
    SHUTDOWN_UNCONFIRMED = "SHUTDOWN_UNCONFIRMED"
    QUERY = "QUERY"


class CommandClassifier(Protocol):
    def classify(self, command: str) -> CommandIntent:
        ...


class PhraseClassifier:
    """Emergency phrases win over shutdown phrases when both match.

    A shutdown phrase only counts as confirmed when the command also names
    the assistant (the wake word).
    """

    def __init__(
        self,
        wake_word: str = "jarvis",
        shutdown_phrases: Iterable[str] = SHUTDOWN_PHRASES,
        emergency_phrases: Iterable[str] = EMERGENCY_PHRASES,
    ):
        self._wake_word = wake_word.lower()
        self._shutdown = tuple(p.lower() for p in shutdown_phrases)
        self._emergency = tuple(p.lower() for p in emergency_phrases)

    def classify(self, command: str) -> CommandIntent:
        text = command.lower()
        if any(phrase in text for phrase in self._emergency):
            return CommandIntent.EMERGENCY
        if any(phrase in text for phrase in self._shutdown):
            if self._wake_word and self._wake_word in text:
                return CommandIntent.SHUTDOWN
            return CommandIntent.SHUTDOWN_UNCONFIRMED
        return CommandIntent.QUERY


@dataclass(frozen=True)
class SystemAction:
    type: str
    command: str
    args: tuple[str, ...] = ()


# trigger phrases in the AI response -> action to run
SYSTEM_ACTIONS: tuple[tuple[tuple[str, ...], SystemAction], ...] = (
    (("system time", "current time"), SystemAction("system.info", "date")),
)


def extract_system_actions(response: str) -> list[SystemAction]:
    """Map mentions in an AI response to system actions, in table order."""
    text = response.lower()
    return [action for triggers, action in SYSTEM_ACTIONS if any(t in text for t in triggers)]
