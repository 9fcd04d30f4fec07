"""Message formatting for the AI backend and cleanup of its replies for speech."""

import json
import re
from collections.abc import Mapping


def build_messages(
    system_prompt: str,
    history: list[dict],
    user_text: str,
    context: Mapping | None = None,
) -> list[dict]:
    """Build the messages list for a chat completion call.

    Args:
        system_prompt: The system-level instruction.
        history: Previous conversation turns [{"role": ..., "content": ...}, ...].
        user_text: The latest user command.
        context: Optional situational data, appended as a second user message.

    Returns:
        Full messages list including system, history, the command and context.
    """
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend(history)
    messages.append({"role": "user", "content": user_text})
    if context:
        messages.append({"role": "user", "content": f"Context: {json.dumps(context, default=str)}"})
    return messages


def clean_for_tts(text: str) -> str:
    """Strip citations, URLs, markdown, and other non-speakable artifacts."""
    # Remove markdown links [text](url) → text
    text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)
    text = re.sub(r'https?://\S+', '', text)
    # Citation markers like [1], [2, 3], 【1†source】
    text = re.sub(r'\[\d+(?:[,\s]*\d+)*\]', '', text)
    text = re.sub(r'【[^】]*】', '', text)
    # Code fences and inline code
    text = re.sub(r'```.*?```', '', text, flags=re.DOTALL)
    text = re.sub(r'`([^`]+)`', r'\1', text)
    # Bold/italic, headers, bullets
    text = re.sub(r'\*{1,3}([^*]+)\*{1,3}', r'\1', text)
    text = re.sub(r'^#{1,6}\s+', '', text, flags=re.MULTILINE)
    text = re.sub(r'^\s*[-*•]\s+', '', text, flags=re.MULTILINE)
    text = re.sub(r'\n{2,}', '. ', text)
    text = re.sub(r'\n', ' ', text)
    text = re.sub(r'  +', ' ', text)
    return text.strip()


def truncate_for_speech(text: str, max_length: int) -> str:
    """Cut *text* to *max_length* characters, preferring a sentence or word boundary."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    cut = text[:max_length]
    sentence_end = max(cut.rfind(". "), cut.rfind("! "), cut.rfind("? "))
    if sentence_end >= max_length // 2:
        return cut[:sentence_end + 1]
    space = cut.rfind(" ")
    if space > 0:
        cut = cut[:space]
    return cut.rstrip(",;:") + "..."
