# coding=utf-8
from __future__ import annotations

import json
import threading
import urllib.request
from typing import Any, Dict, Optional

_LANGUAGE_NAMES = {
    "ar": "Arabic",
    "en": "English",
    "fr": "French",
    "ur": "Urdu",
    "tr": "Turkish",
    "id": "Indonesian",
    "ms": "Malay",
}


def _language_name(code: str) -> str:
    key = str(code or "").strip().lower().split("-")[0]
    return _LANGUAGE_NAMES.get(key, str(code or ""))


class GoogleTranslator:
    """
    Google Cloud Translation (basic, v2) client.
    """

    def __init__(
        self,
        source_language: str = "ar",
        target_language: str = "en",
        client: Optional[Any] = None,
    ) -> None:
        self.source_language = str(source_language or "ar")
        self.target_language = str(target_language or "en")
        if client is None:
            from google.cloud import translate_v2

            client = translate_v2.Client()
        self.client = client

    def translate(
        self,
        text: str,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> str:
        src = str(text or "").strip()
        if not src:
            return ""
        result = self.client.translate(
            src,
            source_language=str(source_language or self.source_language),
            target_language=str(target_language or self.target_language),
            format_="text",
        )
        if isinstance(result, dict):
            return str(result.get("translatedText") or "").strip()
        return ""


class OpenAIAPITranslator:
    """
    Translation client using an OpenAI-compatible Chat Completions HTTP API.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        source_language: str = "ar",
        target_language: str = "en",
        max_new_tokens: int = 256,
        timeout_sec: float = 30.0,
        api_key: str = "",
    ) -> None:
        self.base_url = str(base_url or "").strip()
        if not self.base_url:
            raise ValueError("translation api base_url is empty")
        self.model = str(model or "").strip()
        if not self.model:
            raise ValueError("translation api model is empty")
        self.source_language = str(source_language or "ar")
        self.target_language = str(target_language or "en")
        self.max_new_tokens = max(8, int(max_new_tokens))
        self.timeout_sec = max(1.0, float(timeout_sec))
        self.api_key = str(api_key or "").strip()
        self._lock = threading.Lock()

        normalized = self.base_url.rstrip("/")
        if normalized.endswith("/chat/completions"):
            self.chat_url = normalized
        elif normalized.endswith("/v1"):
            self.chat_url = f"{normalized}/chat/completions"
        else:
            self.chat_url = f"{normalized}/v1/chat/completions"

    def build_prompt(self, text: str, source_language: str, target_language: str) -> str:
        return (
            f"Translate the following {_language_name(source_language)} text into "
            f"{_language_name(target_language)}.\n"
            "Keep the meaning exact and keep proper names. Output only the translation.\n\n"
            f"{text}"
        )

    @staticmethod
    def extract_content(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        message = choices[0].get("message", {}) if isinstance(choices[0], dict) else {}
        content = message.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            parts = []
            for item in content:
                if isinstance(item, str):
                    parts.append(item)
                elif isinstance(item, dict) and isinstance(item.get("text"), str):
                    parts.append(item["text"])
            return "".join(parts).strip()
        return ""

    def translate(
        self,
        text: str,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> str:
        src = str(text or "").strip()
        if not src:
            return ""
        source = str(source_language or self.source_language)
        target = str(target_language or self.target_language)
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": self.build_prompt(src, source, target)}],
            "max_tokens": self.max_new_tokens,
            "temperature": 0,
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = urllib.request.Request(
            self.chat_url,
            data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        with self._lock:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        return self.extract_content(json.loads(raw))
