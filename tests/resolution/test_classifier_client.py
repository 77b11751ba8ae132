"""Tests for the HTTP classifier client, driven through httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from lexspine.core.errors import AuthError, ClassifierError, NetworkError, RateLimitError, TimeoutError
from lexspine.resolution.classifier import (
    ClassifierVerdict,
    HttpClassifierClient,
    build_user_prompt,
    parse_classifier_content,
    strip_code_fences,
    verdicts_by_key,
)
from lexspine.resolution.models import WordContext

URL = "https://classifier.test/v1/chat/completions"
WORDS = [WordContext("saudade", pos="NOUN", sentence="Que saudade do sertão")]


def chat_response(content: str, status: int = 200, **kwargs) -> httpx.Response:
    return httpx.Response(status, json={"choices": [{"message": {"content": content}}]}, **kwargs)


def make_client(handler, **kwargs) -> HttpClassifierClient:
    return HttpClassifierClient(URL, client=httpx.Client(transport=httpx.MockTransport(handler)), **kwargs)


# ── Response parsing ─────────────────────────────────────────────────────


class TestParsing:
    def test_english_fields(self):
        (verdict,) = parse_classifier_content(
            '{"classifications": [{"word": "Saudade", "code": "se", "alternates": ["ab"], '
            '"is_polysemous": true, "confidence": 0.92}]}'
        )
        assert verdict == ClassifierVerdict("saudade", ("SE", "AB"), 0.92, True)

    def test_portuguese_fields(self):
        (verdict,) = parse_classifier_content(
            '{"classificacoes": [{"palavra": "sertão", "tagset_codigo": "GE", '
            '"tagsets_alternativos": null, "confianca": 0.8}]}'
        )
        assert verdict.key == "sertao"
        assert verdict.classification == ("GE",)

    def test_code_fences_stripped(self):
        fenced = '```json\n{"classifications": [{"word": "casa", "code": "AB", "confidence": 0.9}]}\n```'
        assert strip_code_fences(fenced).startswith("{")
        assert parse_classifier_content(fenced)[0].classification == ("AB",)

    def test_confidence_clamped(self):
        (verdict,) = parse_classifier_content('{"classifications": [{"word": "casa", "code": "AB", "confidence": 7}]}')
        assert verdict.confidence == 1.0

    def test_not_classified(self):
        (verdict,) = parse_classifier_content('{"classifications": [{"word": "xyz", "code": "nc"}]}')
        assert verdict.not_classified

    @pytest.mark.parametrize("content", ["not json", '{"items": []}', '{"classifications": [{"word": "x"}]}'])
    def test_bad_content(self, content):
        with pytest.raises(ClassifierError) as exc_info:
            parse_classifier_content(content)
        assert exc_info.value.retryable

    def test_first_verdict_per_key_wins(self):
        verdicts = [ClassifierVerdict("casa", ("AB",), 0.9), ClassifierVerdict("casa", ("SE",), 0.5)]
        assert verdicts_by_key(verdicts)["casa"].classification == ("AB",)

    def test_prompt_lists_words_with_context(self):
        prompt = build_user_prompt(WORDS + [WordContext("casa")])
        assert '1. saudade [NOUN] - context: "Que saudade do sertão"' in prompt
        assert "2. casa" in prompt


# ── HTTP behavior ────────────────────────────────────────────────────────


class TestHttpClassifierClient:
    def test_successful_call(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return chat_response('{"classifications": [{"word": "saudade", "code": "SE", "confidence": 0.9}]}')

        verdicts = make_client(handler, api_key="secret", model="test-model").classify(WORDS)

        assert verdicts[0].classification == ("SE",)
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["messages"][0]["role"] == "system"

    def test_empty_batch_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert make_client(handler).classify([]) == []

    def test_rate_limited(self):
        client = make_client(lambda request: httpx.Response(429, headers={"Retry-After": "12"}, text="slow down"))
        with pytest.raises(RateLimitError) as exc_info:
            client.classify(WORDS)
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.retryable

    def test_rate_limited_without_header(self):
        client = make_client(lambda request: httpx.Response(429))
        with pytest.raises(RateLimitError) as exc_info:
            client.classify(WORDS)
        assert exc_info.value.retry_after == 60.0

    def test_server_error_is_retryable(self):
        client = make_client(lambda request: httpx.Response(503, text="overloaded"))
        with pytest.raises(NetworkError) as exc_info:
            client.classify(WORDS)
        assert exc_info.value.retryable
        assert exc_info.value.context.http_status == 503

    def test_bad_credentials(self):
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(AuthError):
            client.classify(WORDS)

    def test_rejected_request_is_permanent(self):
        client = make_client(lambda request: httpx.Response(400, text="bad model"))
        with pytest.raises(ClassifierError) as exc_info:
            client.classify(WORDS)
        assert not exc_info.value.retryable

    def test_missing_message_content(self):
        client = make_client(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(ClassifierError, match="no message content"):
            client.classify(WORDS)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(TimeoutError):
            make_client(handler).classify(WORDS)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            make_client(handler).classify(WORDS)

    def test_from_settings(self, settings):
        configured = settings.model_copy(update={"classifier_url": URL, "classifier_model": "m"})
        client = HttpClassifierClient.from_settings(configured)
        try:
            assert client.url == URL
            assert client.model == "m"
        finally:
            client.close()
