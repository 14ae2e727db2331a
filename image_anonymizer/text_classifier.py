"""
Text-classification collaborator for strings no pattern rule could resolve.

One request covers every unresolved string of an image; the service answers
with one verdict per string (personal name, company name, or neither).
"""

import json
import os
from typing import List, Optional, Sequence, Dict, Any

import requests

from .config import ClassificationConfig, Verdict
from .exceptions import ClassificationFailed
from .http_utils import HTTPStatusError, ThreadLocalSession, post_json
from .logger import LoggerMixin


PROMPT_TEMPLATE = """You are reviewing words read from a screenshot or photo by OCR.
For each numbered string decide whether it is an ACTUAL personal name, an ACTUAL
company or service name, or neither.

Labels, button text and generic UI terms are NOT names. For example 'API Key',
'Email', 'Credentials', 'Create', 'Password', 'Submit', 'Login', 'Dismiss',
'View', 'Username' and 'Authentication' are all "neither".

Answer with a JSON object of the form {{"verdicts": [...]}} containing exactly
{count} entries in input order, each one of "person_name", "company_name" or
"neither".

Strings:
{items}"""


class TextClassifier(LoggerMixin):
    """Base class for text-classification services."""

    def classify(self, texts: Sequence[str]) -> List[Verdict]:
        """
        Classify a batch of strings.

        Args:
            texts: Candidate strings from one image

        Returns:
            One verdict per input string, in input order

        Raises:
            ClassificationFailed: If the service errored or the batch is malformed
        """
        raise NotImplementedError("Subclasses must implement classify")


def build_prompt(texts: Sequence[str]) -> str:
    """Build the batch prompt; strings are JSON-quoted so OCR noise cannot break the list."""
    items = "\n".join(f"{i + 1}. {json.dumps(text)}" for i, text in enumerate(texts))
    return PROMPT_TEMPLATE.format(count=len(texts), items=items)


def parse_verdicts(raw: str, expected: int) -> List[Verdict]:
    """
    Parse the model's JSON answer.

    Raises:
        ClassificationFailed: On invalid JSON, unknown verdicts or a length mismatch
    """
    try:
        data = json.loads(raw)
        values = data["verdicts"]
        verdicts = [Verdict(str(v).strip().lower()) for v in values]
    except (ValueError, KeyError, TypeError) as e:
        raise ClassificationFailed(f"Malformed classification response: {e}") from e

    if len(verdicts) != expected:
        raise ClassificationFailed(
            f"Classification returned {len(verdicts)} verdicts for {expected} strings",
            details={"expected": expected, "received": len(verdicts)}
        )
    return verdicts


class GeminiTextClassifier(TextClassifier):
    """Google Gemini ``generateContent`` implementation."""

    def __init__(self, config: Optional[ClassificationConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or ClassificationConfig()
        self._session = session
        self._thread_sessions = ThreadLocalSession()

    @property
    def session(self) -> requests.Session:
        """Injected session, otherwise one per calling thread."""
        if self._session is not None:
            return self._session
        return self._thread_sessions.get()

    def _api_key(self) -> str:
        api_key = self.config.api_key or os.environ.get("GCP_API_KEY")
        if not api_key:
            raise ClassificationFailed("GCP_API_KEY environment variable not set")
        return api_key

    def _build_request(self, texts: Sequence[str]) -> Dict[str, Any]:
        return {
            "contents": [{
                "role": "user",
                "parts": [{"text": build_prompt(texts)}],
            }],
            "generationConfig": {
                "temperature": 0.0,
                "topP": 0.1,
                "topK": 1,
                "responseMimeType": "application/json",
            },
        }

    def classify(self, texts: Sequence[str]) -> List[Verdict]:
        if not texts:
            return []

        api_key = self._api_key()
        url = f"{self.config.endpoint}/{self.config.model}:generateContent"
        self.log_debug(f"Classifying {len(texts)} strings with {self.config.model}")

        try:
            body = post_json(
                self.session,
                url,
                self._build_request(texts),
                params={"key": api_key},
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries,
            )
        except HTTPStatusError as e:
            self.log_error(f"Gemini API request failed with status {e.status_code}")
            raise ClassificationFailed(
                f"Gemini API request failed with status {e.status_code}",
                details={"status_code": e.status_code}
            ) from e
        except requests.RequestException as e:
            raise ClassificationFailed(f"Failed to send request to Google Gemini API: {e}") from e
        except ValueError as e:
            raise ClassificationFailed("Failed to parse Google Gemini API response") from e

        try:
            candidates = body["candidates"]
            if not candidates:
                raise ClassificationFailed("No candidates in Gemini API response")
            raw = candidates[0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ClassificationFailed(f"Malformed Gemini API response: {e}") from e

        verdicts = parse_verdicts(raw, len(texts))
        self.log_debug(f"Gemini verdicts: {[v.value for v in verdicts]}")
        return verdicts
