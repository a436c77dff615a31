"""
Optional machine translation of show summaries (Azure Translator v3).

Translation never blocks a migration: any failure returns the source text.
"""

import logging
from typing import Optional

import requests

from http_client import RateLimitedSession, SessionAwareComponent
from metrics import metrics
from text_utils import culture_language

logger = logging.getLogger(__name__)


class Translator(SessionAwareComponent):
    """Translate summaries into the language of each import culture."""

    def __init__(
        self,
        enabled: bool,
        api_key: Optional[str] = None,
        endpoint: str = "",
        region: Optional[str] = None,
        source_culture: str = "en",
        session: RateLimitedSession = None,
    ):
        self.enabled = bool(enabled and api_key)
        self.endpoint = endpoint.rstrip("/")
        self.source_language = culture_language(source_culture)

        # per request, the session may be shared
        self._headers = {}
        if self.enabled:
            self._headers["Ocp-Apim-Subscription-Key"] = api_key
            if region:
                self._headers["Ocp-Apim-Subscription-Region"] = region
        self.init_session(session, timeout=30.0)

    @classmethod
    def from_options(cls, options, session: RateLimitedSession = None) -> "Translator":
        return cls(
            enabled=options.use_translation,
            api_key=options.translator_key,
            endpoint=options.translator_endpoint,
            region=options.translator_region,
            source_culture=options.source_culture,
            session=session,
        )

    def needs_translation(self, culture: str) -> bool:
        return self.enabled and culture_language(culture) != self.source_language

    def translate(self, text: Optional[str], to_culture: str, text_type: str = "plain") -> Optional[str]:
        """
        Translate text into the language of to_culture.

        Args:
            text: Source text
            to_culture: Import culture, e.g. "da-DK"
            text_type: "plain" or "html" (markup is preserved)

        Returns:
            Translated text, or the input unchanged when translation is
            disabled, not needed, or fails
        """
        if not text or not self.needs_translation(to_culture):
            return text

        target = culture_language(to_culture)
        try:
            response = self.session.post(
                f"{self.endpoint}/translate",
                params={
                    "api-version": "3.0",
                    "from": self.source_language,
                    "to": target,
                    "textType": text_type,
                },
                json=[{"Text": text}],
                headers=self._headers,
            )
            if not response.ok:
                logger.debug(f"Translator returned HTTP {response.status_code} for {target}")
                metrics.inc("translations", labels={"status": "error"})
                return text
            translated = response.json()[0]["translations"][0]["text"]
        except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as e:
            logger.debug(f"Translation to {target} failed: {e}")
            metrics.inc("translations", labels={"status": "error"})
            return text

        metrics.inc("translations", labels={"status": "success"})
        return translated or text
