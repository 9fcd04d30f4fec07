"""Conversation history owned by one voice session."""


class Conversation:
    """Ordered user/assistant exchanges, keeping only the newest ``retention`` pairs."""

    def __init__(self, retention: int = 10):
        self._retention = max(0, retention)
        self._history: list[dict] = []

    @property
    def retention(self) -> int:
        return self._retention

    def add_exchange(self, user_text: str, assistant_text: str) -> None:
        self._history.append({"role": "user", "content": user_text})
        self._history.append({"role": "assistant", "content": assistant_text})
        self._trim()

    def get_messages(self) -> list[dict]:
        """Return the history (without system prompt), oldest first."""
        return [dict(m) for m in self._history]

    def clear(self) -> None:
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)

    def _trim(self) -> None:
        max_messages = self._retention * 2
        if len(self._history) > max_messages:
            self._history = self._history[len(self._history) - max_messages:]
