"""
Translation Service - Client for the backend's ``/translate`` endpoints.
Caches results and collapses concurrent requests for the same text.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..middleware import build_event_hooks
from .errors import MalformedResponseError, TranslationError

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = [
    {"code": "en", "name": "English"},
    {"code": "tr", "name": "Türkçe"},
]


class TranslationService:
    """Translates message text through the chat backend."""

    def __init__(
        self,
        base_url: str = "http://localhost:8081/api",
        timeout: float = 15.0,
        log_requests: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.event_hooks = build_event_hooks(log_requests)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    @staticmethod
    def get_cache_key(text: str, target_lang: str, source_lang: str = "auto") -> str:
        return f"{source_lang}-{target_lang}-{text}"

    def get_cached_translation(
        self, text: str, target_lang: str, source_lang: str = "auto"
    ) -> Optional[Dict[str, Any]]:
        return self._cache.get(self.get_cache_key(text, target_lang, source_lang))

    def _set_cached_translation(
        self, text: str, target_lang: str, translated_text: str, source_lang: str = "auto"
    ) -> None:
        self._cache[self.get_cache_key(text, target_lang, source_lang)] = {
            "translated_text": translated_text,
            "timestamp": time.time(),
            "source_lang": source_lang,
            "target_lang": target_lang,
        }

    async def translate_text(self, text: str, target_lang: str, source_lang: str = "auto") -> str:
        """
        Translate a single text.

        Blank text and same-language requests are returned unchanged. A
        request already in flight for the same key is awaited instead of
        being sent twice.

        Raises:
            TranslationError: With a user-facing message
        """
        if not text or not text.strip():
            return text

        if source_lang == target_lang:
            return text

        cached = self.get_cached_translation(text, target_lang, source_lang)
        if cached:
            return cached["translated_text"]

        key = self.get_cache_key(text, target_lang, source_lang)
        pending = self._pending.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._perform_translation(text, target_lang, source_lang))
        self._pending[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._pending.pop(key, None)
            else:
                task.add_done_callback(lambda _: self._pending.pop(key, None))

    async def _perform_translation(self, text: str, target_lang: str, source_lang: str) -> str:
        endpoint = "/translate"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, event_hooks=self.event_hooks) as client:
                resp = await client.post(
                    f"{self.base_url}{endpoint}",
                    json={"text": text, "targetLang": target_lang, "sourceLang": source_lang},
                )
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"Translation failed with status {status_code}")
            if status_code == 429:
                raise TranslationError(
                    "Translation rate limit exceeded. Please try again later.", status_code
                ) from e
            if status_code >= 500:
                raise TranslationError("Translation service temporarily unavailable.", status_code) from e
            raise TranslationError("Translation failed. Please try again.", status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Translation request failed: {e}")
            raise TranslationError("Translation failed. Please try again.") from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("translatedText"):
            raise TranslationError("Translation failed. Please try again.") from MalformedResponseError(
                endpoint, "translatedText"
            )

        translated_text = data["translatedText"]
        self._set_cached_translation(
            text, target_lang, translated_text, data.get("detectedSourceLang") or source_lang
        )
        # Also index under the requested source so repeat lookups hit the cache
        if data.get("detectedSourceLang") and data["detectedSourceLang"] != source_lang:
            self._set_cached_translation(text, target_lang, translated_text, source_lang)
        return translated_text

    async def translate_batch(
        self, texts: List[str], target_lang: str, source_lang: str = "auto"
    ) -> List[Dict[str, Any]]:
        """Translate several texts; failed items fall back to the original text."""
        results = await asyncio.gather(
            *(self.translate_text(text, target_lang, source_lang) for text in texts),
            return_exceptions=True,
        )

        batch = []
        for original, result in zip(texts, results):
            failed = isinstance(result, Exception)
            batch.append({
                "original": original,
                "translated": original if failed else result,
                "success": not failed,
                "error": str(result) if failed else None,
            })
        return batch

    async def detect_language(self, text: str) -> str:
        """Detect the language of ``text``; defaults to English on failure."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, event_hooks=self.event_hooks) as client:
                resp = await client.post(f"{self.base_url}/translate/detect", json={"text": text})
                resp.raise_for_status()
                return resp.json()["data"]["language"]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Language detection failed: {e}")
            return "en"

    @staticmethod
    def get_supported_languages() -> List[Dict[str, str]]:
        return list(SUPPORTED_LANGUAGES)

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
