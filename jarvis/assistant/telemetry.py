"""Helpers for privacy-aware metrics payloads."""


def command_metrics_payload(command: str, intent: str, include_text: bool = False) -> dict:
    """Build the command metrics payload with optional transcript text."""
    payload = {
        "intent": intent,
        "text_chars": len(command),
    }
    if include_text:
        payload["text"] = command
    return payload


def ai_metrics_payload(response: str, elapsed_s: float, include_text: bool = False) -> dict:
    """Build the AI response payload with optional response text."""
    payload = {
        "elapsed_s": elapsed_s,
        "text_chars": len(response),
    }
    if include_text:
        payload["text"] = response
    return payload
