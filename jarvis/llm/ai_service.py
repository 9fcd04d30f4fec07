"""Client for an OpenAI-compatible AI backend (A4F by default).

Chat completions are streamed as SSE. Image generation, web search and text
analysis share the same retrying HTTP path.
"""

import json
import logging
import os
import random
import time
from collections.abc import Mapping
from dataclasses import dataclass

import requests

from jarvis.assistant.conversation import Conversation
from jarvis.llm.prompt import build_messages

log = logging.getLogger(__name__)

FALLBACK_RESPONSE = "I apologize, but I encountered an error while processing your command. Please try again."
EMPTY_RESPONSE = "I apologize, but I was unable to generate a response."

_ANALYSIS_PROMPT = (
    "You are a text analysis expert. Provide detailed, accurate analysis "
    "based on the requested analysis type."
)


class AIServiceError(RuntimeError):
    """The AI backend is unavailable or returned an unusable response."""


@dataclass(frozen=True)
class SearchResult:
    url: str
    name: str
    snippet: str
    host_name: str = ""
    rank: int = 0
    date: str = ""
    favicon: str = ""


class AIService:
    """HTTP client for chat, image and search requests."""

    def __init__(self, ai_config: Mapping):
        self._model = ai_config["model"]
        self._api_base = ai_config.get("apiBase", "https://api.a4f.co/v1").rstrip("/")
        self._api_key_env = ai_config.get("apiKeyEnv", "A4F_API_KEY")
        self._temperature = ai_config.get("temperature", 0.7)
        self._max_tokens = ai_config.get("maxTokens", 1000)
        self._system_prompt = ai_config.get("systemPrompt", "")
        self._enable_memory = ai_config.get("enableMemory", True)
        self._search_path = ai_config.get("searchPath", "/functions/web_search")
        self._image_model = ai_config.get("imageModel", self._model)
        self._timeout = ai_config.get("timeoutMs", 30000) / 1000.0
        try:
            max_retries = int(ai_config.get("maxRetries", 2))
        except (TypeError, ValueError):
            max_retries = 2
        self._max_retries = max(0, max_retries)
        try:
            retry_base_delay_s = float(ai_config.get("retryBaseDelayMs", 250)) / 1000.0
        except (TypeError, ValueError):
            retry_base_delay_s = 0.25
        self._retry_base_delay_s = max(0.0, retry_base_delay_s)

        self._api_key = ""
        self._initialized = False

    def initialize(self) -> None:
        """Resolve the API credential. Raises AIServiceError when it is missing."""
        log.info("Initializing AI service (model=%s)...", self._model)
        api_key = os.environ.get(self._api_key_env, "")
        if not api_key:
            raise AIServiceError(f"{self._api_key_env} is not set")
        self._api_key = api_key
        self._initialized = True
        log.info("AI service initialized successfully")

    def is_initialized(self) -> bool:
        return self._initialized

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": "JARVIS Voice Service",
        }

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise AIServiceError("AI service not initialized")

    # ── Commands ────────────────────────────────────────────────

    def process_command(
        self,
        command: str,
        context: Mapping | None = None,
        conversation: Conversation | None = None,
    ) -> str:
        """Answer a spoken command. Never raises; failures become an apology."""
        log.info("Processing command: %s", command)
        try:
            self._ensure_initialized()
            history = conversation.get_messages() if (conversation is not None and self._enable_memory) else []
            messages = build_messages(self._system_prompt, history, command, context)
            result = self.chat(messages)
            response = result["text"] or EMPTY_RESPONSE
        except Exception:
            log.exception("Failed to process command")
            return FALLBACK_RESPONSE

        if conversation is not None and self._enable_memory:
            conversation.add_exchange(command, response)

        log.info("AI response generated: %s", response[:100])
        return response

    def chat(self, messages: list[dict], temperature: float | None = None, max_tokens: int | None = None) -> dict:
        """Send a chat completion request with streaming SSE.

        Returns dict with keys: text, model, elapsed_s, ttft_s
        """
        self._ensure_initialized()
        payload = {
            "model": self._model,
            "messages": messages,
            "max_tokens": self._max_tokens if max_tokens is None else max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
            "stream": True,
        }

        t0 = time.monotonic()
        ttft = None
        full_text = ""
        model_used = self._model

        resp = self._post("/chat/completions", payload, stream=True)
        try:
            resp.encoding = "utf-8"
            for line in resp.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data: "):
                    continue
                data_str = line[6:]
                if data_str.strip() == "[DONE]":
                    break
                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    continue

                if "model" in data:
                    model_used = data["model"]

                choices = data.get("choices", [])
                if not choices:
                    continue

                content = choices[0].get("delta", {}).get("content", "")
                if content:
                    if ttft is None:
                        ttft = time.monotonic() - t0
                    full_text += content
        finally:
            resp.close()

        elapsed = time.monotonic() - t0
        return {
            "text": full_text.strip(),
            "model": model_used,
            "elapsed_s": elapsed,
            "ttft_s": ttft or elapsed,
        }

    # ── Other backend functions ─────────────────────────────────

    def generate_image(self, prompt: str, size: str = "1024x1024") -> str:
        """Generate an image and return it base64-encoded."""
        self._ensure_initialized()
        log.info("Generating image with prompt: %s", prompt)
        data = self._post_json("/images/generations", {
            "model": self._image_model,
            "prompt": prompt,
            "size": size,
            "n": 1,
            "response_format": "b64_json",
        })
        items = data.get("data") or []
        image = (items[0].get("b64_json") or items[0].get("base64")) if items else None
        if not image:
            raise AIServiceError("No image data received from AI service")
        log.info("Image generated successfully")
        return image

    def search_web(self, query: str, num_results: int = 10) -> list[SearchResult]:
        """Run a web search and return results ordered by rank."""
        self._ensure_initialized()
        log.info("Searching web for: %s", query)
        data = self._post_json(self._search_path, {"query": query, "num": num_results})
        raw = data.get("results", []) if isinstance(data, Mapping) else data
        if not isinstance(raw, list):
            raise AIServiceError("Unexpected web search response")

        results = []
        for position, item in enumerate(raw, start=1):
            if not isinstance(item, Mapping) or not item.get("url"):
                continue
            results.append(SearchResult(
                url=item["url"],
                name=item.get("name", ""),
                snippet=item.get("snippet", ""),
                host_name=item.get("host_name", ""),
                rank=int(item.get("rank", position)),
                date=item.get("date", ""),
                favicon=item.get("favicon", ""),
            ))
        results.sort(key=lambda r: r.rank)
        log.info("Web search completed, found %d results", len(results))
        return results[:num_results]

    def analyze_text(self, text: str, analysis_type: str = "general") -> dict:
        log.info("Analyzing text with type: %s", analysis_type)
        messages = [
            {"role": "system", "content": _ANALYSIS_PROMPT},
            {
                "role": "user",
                "content": f"Please analyze the following text and provide {analysis_type} analysis:\n\n{text}",
            },
        ]
        try:
            result = self.chat(messages, temperature=0.3, max_tokens=1000)
        except requests.RequestException as e:
            raise AIServiceError(f"Text analysis failed: {e}") from e
        return {
            "type": analysis_type,
            "analysis": result["text"] or "I apologize, but I was unable to analyze the text.",
            "textLength": len(text),
        }

    # ── HTTP ────────────────────────────────────────────────────

    def _post_json(self, path: str, payload: dict):
        try:
            resp = self._post(path, payload)
        except requests.RequestException as e:
            raise AIServiceError(f"Request to {path} failed: {e}") from e
        try:
            return resp.json()
        except ValueError as e:
            raise AIServiceError(f"Invalid JSON from {path}") from e
        finally:
            resp.close()

    def _post(self, path: str, payload: dict, stream: bool = False) -> requests.Response:
        """POST with retries on timeouts, connection errors, 429 and 5xx."""
        attempts = self._max_retries + 1
        url = f"{self._api_base}{path}"

        for attempt in range(attempts):
            try:
                resp = requests.post(
                    url,
                    headers=self._headers(),
                    json=payload,
                    stream=stream,
                    timeout=self._timeout,
                )
            except (requests.Timeout, requests.ConnectionError) as exc:
                if attempt >= attempts - 1:
                    raise
                log.warning("AI request failed (%s), retrying", exc)
                self._sleep_before_retry(attempt)
                continue

            if resp.status_code >= 400:
                if self._should_retry_status(resp.status_code) and attempt < attempts - 1:
                    log.warning("AI backend returned HTTP %d, retrying", resp.status_code)
                    resp.close()
                    self._sleep_before_retry(attempt)
                    continue
                try:
                    resp.raise_for_status()
                finally:
                    resp.close()
            return resp

        raise AIServiceError("AI request failed without response")

    def _should_retry_status(self, status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    def _sleep_before_retry(self, attempt: int) -> None:
        base = self._retry_base_delay_s * (2 ** attempt)
        jitter = random.uniform(0.0, base * 0.25)
        time.sleep(base + jitter)
