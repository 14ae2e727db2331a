"""
Tests for the Google Vision and Gemini clients against a fake HTTP session.
"""

import json
import threading

import pytest
import requests

from image_anonymizer.config import ClassificationConfig, Verdict, VisionConfig
from image_anonymizer.exceptions import ClassificationFailed, DetectionFailed
from image_anonymizer.http_utils import ThreadLocalSession
from image_anonymizer.text_classifier import GeminiTextClassifier, build_prompt, parse_verdicts
from image_anonymizer.vision import GoogleVisionClient


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, params=None, json=None, timeout=None):
        self.calls.append({"url": url, "params": params, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def vertices(*points):
    return {"vertices": [{"x": x, "y": y} for x, y in points]}


@pytest.fixture
def vision_payload():
    """Typical images:annotate response with one full-page block, two words and a face."""
    return {
        "responses": [{
            "textAnnotations": [
                {"description": "Hello\nworld",
                 "boundingPoly": vertices((0, 0), (100, 0), (100, 40), (0, 40))},
                {"description": "Hello",
                 "boundingPoly": {"vertices": [{"y": 5}, {"x": 40, "y": 5}, {"x": 40, "y": 20}, {"y": 20}]}},
                {"description": "world",
                 "boundingPoly": vertices((50, 5), (95, 5), (95, 20), (50, 20))},
            ],
            "faceAnnotations": [
                {"boundingPoly": vertices((10, 50), (60, 50), (60, 110), (10, 110)),
                 "detectionConfidence": 0.98},
            ],
        }]
    }


@pytest.fixture
def vision_config():
    return VisionConfig(api_key="test-key", max_retries=1)


@pytest.fixture
def classification_config():
    return ClassificationConfig(api_key="test-key", model="gemini-test", max_retries=1)


def gemini_payload(verdicts):
    return {"candidates": [{"content": {"parts": [{"text": json.dumps({"verdicts": verdicts})}]}}]}


class TestGoogleVisionClient:
    """Test request building and response parsing."""

    def test_parses_words_and_faces(self, vision_config, vision_payload):
        session = FakeSession(FakeResponse(200, vision_payload))
        client = GoogleVisionClient(vision_config, session)

        result = client.annotate(b"img")

        assert [a.text for a in result.text_annotations] == ["Hello", "world"]
        assert result.text_annotations[0].polygon == ((0, 5), (40, 5), (40, 20), (0, 20))
        assert len(result.faces) == 1
        assert result.faces[0].bounding_box == (10, 50, 50, 60)
        assert result.faces[0].confidence == pytest.approx(0.98)

    def test_request_contents(self, vision_config, vision_payload):
        session = FakeSession(FakeResponse(200, vision_payload))

        GoogleVisionClient(vision_config, session).annotate(b"img")

        call = session.calls[0]
        assert call["url"] == vision_config.endpoint
        assert call["params"] == {"key": "test-key"}
        request = call["json"]["requests"][0]
        assert request["image"]["content"] == "aW1n"
        assert request["features"] == [
            {"type": "TEXT_DETECTION", "maxResults": 100},
            {"type": "FACE_DETECTION", "maxResults": 100},
        ]

    def test_faces_not_requested(self, vision_config):
        session = FakeSession(FakeResponse(200, {"responses": [{}]}))

        result = GoogleVisionClient(vision_config, session).annotate(b"img", detect_faces=False)

        assert [f["type"] for f in session.calls[0]["json"]["requests"][0]["features"]] == ["TEXT_DETECTION"]
        assert result.text_annotations == []
        assert result.faces == []

    def test_api_key_from_environment(self, vision_payload, monkeypatch):
        monkeypatch.setenv("GCP_API_KEY", "env-key")
        session = FakeSession(FakeResponse(200, vision_payload))

        GoogleVisionClient(VisionConfig(max_retries=1), session).annotate(b"img")

        assert session.calls[0]["params"] == {"key": "env-key"}

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GCP_API_KEY", raising=False)
        session = FakeSession()

        with pytest.raises(DetectionFailed, match="GCP_API_KEY"):
            GoogleVisionClient(VisionConfig(), session).annotate(b"img")

        assert session.calls == []

    def test_error_object_in_response(self, vision_config):
        payload = {"responses": [{"error": {"code": 3, "message": "Bad image data."}}]}
        session = FakeSession(FakeResponse(200, payload))

        with pytest.raises(DetectionFailed, match="Bad image data"):
            GoogleVisionClient(vision_config, session).annotate(b"img")

    def test_empty_responses(self, vision_config):
        session = FakeSession(FakeResponse(200, {"responses": []}))

        with pytest.raises(DetectionFailed):
            GoogleVisionClient(vision_config, session).annotate(b"img")

    def test_client_error_status_not_retried(self, vision_payload):
        session = FakeSession(FakeResponse(403, text="forbidden"), FakeResponse(200, vision_payload))

        with pytest.raises(DetectionFailed) as exc_info:
            GoogleVisionClient(VisionConfig(api_key="k", max_retries=3), session).annotate(b"img")

        assert exc_info.value.details == {"status_code": 403}
        assert len(session.calls) == 1

    def test_transient_status_retried(self, vision_payload):
        session = FakeSession(FakeResponse(503, text="unavailable"), FakeResponse(200, vision_payload))

        result = GoogleVisionClient(VisionConfig(api_key="k", max_retries=2), session).annotate(b"img")

        assert len(session.calls) == 2
        assert len(result.text_annotations) == 2

    def test_connection_error(self, vision_config):
        session = FakeSession(requests.ConnectionError("refused"))

        with pytest.raises(DetectionFailed):
            GoogleVisionClient(vision_config, session).annotate(b"img")

    def test_invalid_json(self, vision_config):
        session = FakeSession(FakeResponse(200, text="<html>oops</html>"))

        with pytest.raises(DetectionFailed):
            GoogleVisionClient(vision_config, session).annotate(b"img")

    def test_malformed_annotation(self, vision_config):
        payload = {"responses": [{"textAnnotations": [{}, "not-a-dict"]}]}
        session = FakeSession(FakeResponse(200, payload))

        with pytest.raises(DetectionFailed):
            GoogleVisionClient(vision_config, session).annotate(b"img")


class TestGeminiTextClassifier:
    """Test batch classification requests."""

    def test_classifies_batch(self, classification_config):
        session = FakeSession(FakeResponse(200, gemini_payload(["person_name", "neither"])))

        verdicts = GeminiTextClassifier(classification_config, session).classify(["Jane", "Submit"])

        assert verdicts == [Verdict.PERSON_NAME, Verdict.NEITHER]

    def test_request_contents(self, classification_config):
        session = FakeSession(FakeResponse(200, gemini_payload(["company_name"])))

        GeminiTextClassifier(classification_config, session).classify(["Acme"])

        call = session.calls[0]
        assert call["url"].endswith("/gemini-test:generateContent")
        assert call["params"] == {"key": "test-key"}
        body = call["json"]
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert '1. "Acme"' in body["contents"][0]["parts"][0]["text"]

    def test_empty_batch_makes_no_request(self, classification_config):
        session = FakeSession()

        assert GeminiTextClassifier(classification_config, session).classify([]) == []
        assert session.calls == []

    def test_length_mismatch(self, classification_config):
        session = FakeSession(FakeResponse(200, gemini_payload(["neither"])))

        with pytest.raises(ClassificationFailed):
            GeminiTextClassifier(classification_config, session).classify(["Jane", "Smith"])

    def test_unknown_verdict(self, classification_config):
        session = FakeSession(FakeResponse(200, gemini_payload(["maybe"])))

        with pytest.raises(ClassificationFailed):
            GeminiTextClassifier(classification_config, session).classify(["Jane"])

    def test_no_candidates(self, classification_config):
        session = FakeSession(FakeResponse(200, {"candidates": []}))

        with pytest.raises(ClassificationFailed):
            GeminiTextClassifier(classification_config, session).classify(["Jane"])

    def test_non_json_answer(self, classification_config):
        payload = {"candidates": [{"content": {"parts": [{"text": "Jane is a person"}]}}]}
        session = FakeSession(FakeResponse(200, payload))

        with pytest.raises(ClassificationFailed):
            GeminiTextClassifier(classification_config, session).classify(["Jane"])

    def test_server_error(self, classification_config):
        session = FakeSession(FakeResponse(500, text="internal"))

        with pytest.raises(ClassificationFailed) as exc_info:
            GeminiTextClassifier(classification_config, session).classify(["Jane"])

        assert exc_info.value.details == {"status_code": 500}

    def test_timeout(self, classification_config):
        session = FakeSession(requests.Timeout("slow"))

        with pytest.raises(ClassificationFailed):
            GeminiTextClassifier(classification_config, session).classify(["Jane"])


class TestPromptHelpers:
    """Test prompt construction and answer parsing."""

    def test_prompt_numbers_and_quotes_strings(self):
        prompt = build_prompt(['Say "hi"', "Jane"])

        assert '1. "Say \\"hi\\""' in prompt
        assert '2. "Jane"' in prompt
        assert "exactly\n2 entries" in prompt

    def test_parse_verdicts_normalizes_case(self):
        assert parse_verdicts('{"verdicts": [" PERSON_NAME ", "Neither"]}', 2) == [
            Verdict.PERSON_NAME, Verdict.NEITHER
        ]

    def test_parse_verdicts_missing_key(self):
        with pytest.raises(ClassificationFailed):
            parse_verdicts('{"answers": []}', 0)


def session_in_new_thread(get_session):
    sessions = []
    worker = threading.Thread(target=lambda: sessions.append(get_session()))
    worker.start()
    worker.join()
    return sessions[0]


class TestSessions:
    """Test that worker threads never share a requests.Session."""

    def test_thread_local_session(self):
        holder = ThreadLocalSession()

        first = holder.get()

        assert isinstance(first, requests.Session)
        assert holder.get() is first
        assert session_in_new_thread(holder.get) is not first

    def test_clients_use_one_session_per_thread(self, vision_config, classification_config):
        for client in (GoogleVisionClient(vision_config), GeminiTextClassifier(classification_config)):
            assert client.session is client.session
            assert session_in_new_thread(lambda: client.session) is not client.session

    def test_injected_session_is_kept(self, vision_config):
        session = FakeSession()
        client = GoogleVisionClient(vision_config, session)

        assert session_in_new_thread(lambda: client.session) is session
