# coding=utf-8
from __future__ import annotations

import json
import re
import urllib.error
import urllib.request
from typing import Any, Dict, List

from livetranslate.streaming.errors import TranslationFailure
from livetranslate.streaming.protocol import language_name

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def _extract_content(payload: Dict[str, Any]) -> str:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message", {}) if isinstance(choices[0], dict) else {}
        content = message.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            chunks = []
            for item in content:
                if isinstance(item, str):
                    chunks.append(item)
                elif isinstance(item, dict):
                    txt = item.get("text")
                    if isinstance(txt, str):
                        chunks.append(txt)
            return "".join(chunks).strip()
    return ""


def parse_gloss(content: str) -> List[Dict[str, str]]:
    """Parse a gloss reply: a JSON array of {"original", "translated"} objects."""
    raw = _CODE_FENCE.sub("", str(content or "").strip()).strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TranslationFailure(f"gloss reply is not json: {e}") from e
    if not isinstance(data, list):
        raise TranslationFailure("gloss reply must be a json array")

    words: List[Dict[str, str]] = []
    for item in data:
        if not isinstance(item, dict):
            raise TranslationFailure("gloss entries must be objects")
        original = str(item.get("original", "") or "").strip()
        translated = str(item.get("translated", "") or "").strip()
        if not original:
            continue
        words.append({"original": original, "translated": translated})
    return words


class OpenAIAPITranslator:
    """
    Translation client using an OpenAI-compatible Chat Completions HTTP API.

    Calls are blocking; the pipeline runs them in a worker thread.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        max_tokens: int = 1000,
        gloss_max_tokens: int = 500,
        temperature: float = 0.3,
        timeout_sec: float = 30.0,
    ) -> None:
        self.base_url = str(base_url or "").strip()
        if not self.base_url:
            raise ValueError("translation api base_url is empty")
        self.model = str(model or "").strip()
        if not self.model:
            raise ValueError("translation api model is empty")
        self.api_key = str(api_key or "").strip()
        self.max_tokens = max(8, int(max_tokens))
        self.gloss_max_tokens = max(8, int(gloss_max_tokens))
        self.temperature = max(0.0, float(temperature))
        self.timeout_sec = max(1.0, float(timeout_sec))

        normalized = self.base_url.rstrip("/")
        if normalized.endswith("/chat/completions"):
            self.chat_url = normalized
        elif normalized.endswith("/v1"):
            self.chat_url = f"{normalized}/chat/completions"
        else:
            self.chat_url = f"{normalized}/v1/chat/completions"

    def _translate_prompt(self, source_language: str, target_language: str) -> str:
        return (
            f"You are a professional translator. Translate the following text from "
            f"{language_name(source_language)} to {language_name(target_language)}. "
            f"Only return the translation, no explanations."
        )

    def _gloss_prompt(self, source_language: str, target_language: str) -> str:
        return (
            f"Provide word-by-word translation from {language_name(source_language)} "
            f"to {language_name(target_language)}. "
            'Return a JSON array of objects with "original" and "translated" properties '
            "for each significant word, in the order they appear. "
            "Skip articles, prepositions, and other function words. "
            "Keep only nouns, verbs, adjectives, and adverbs. "
            'Example: [{"original": "hund", "translated": "dog"}, '
            '{"original": "springer", "translated": "runs"}]'
        )

    def _complete(self, system_prompt: str, text: str, max_tokens: int) -> str:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            "max_tokens": int(max_tokens),
            "temperature": self.temperature,
            "stream": False,
        }
        data = json.dumps(body, ensure_ascii=False).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        req = urllib.request.Request(self.chat_url, data=data, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raise TranslationFailure(f"translation api http {e.code}") from e
        except (urllib.error.URLError, OSError) as e:
            raise TranslationFailure(f"translation api unreachable: {e}") from e
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TranslationFailure(f"translation api returned invalid json: {e}") from e
        if not isinstance(payload, dict):
            raise TranslationFailure("translation api returned a non-object payload")
        out = _extract_content(payload)
        if not out:
            raise TranslationFailure("translation api returned empty content")
        return out

    def translate(self, text: str, source_language: str, target_language: str) -> str:
        src = str(text or "").strip()
        if not src:
            return ""
        return self._complete(
            self._translate_prompt(source_language, target_language),
            src,
            self.max_tokens,
        )

    def gloss(self, text: str, source_language: str, target_language: str) -> List[Dict[str, str]]:
        src = str(text or "").strip()
        if not src:
            return []
        content = self._complete(
            self._gloss_prompt(source_language, target_language),
            src,
            self.gloss_max_tokens,
        )
        return parse_gloss(content)
