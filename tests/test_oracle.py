from __future__ import annotations

import json

import httpx
import pytest

from tagtransfer.matching.oracle import (
    HttpChatOracle,
    OracleSettings,
    PlainText,
    StaticOracle,
    Structured,
    normalize_oracle_response,
)
from tagtransfer.utils.errors import OracleError


class _Content:
    def __init__(self, content: str) -> None:
        self.content = content


def _oracle(handler) -> HttpChatOracle:
    settings = OracleSettings(base_url="http://oracle.local/v1", api_key="secret", model="test-model")
    return HttpChatOracle(settings, transport=httpx.MockTransport(handler))


def test_normalize_oracle_response_shapes() -> None:
    assert normalize_oracle_response("brut") == "brut"
    assert normalize_oracle_response(None) == ""
    assert normalize_oracle_response(PlainText("texte")) == "texte"
    assert normalize_oracle_response(Structured(content="contenu", text="texte")) == "contenu"
    assert normalize_oracle_response(Structured(text="texte")) == "texte"
    assert normalize_oracle_response({"text": "dict"}) == "dict"
    assert normalize_oracle_response({"tags": []}) == '{"tags": []}'
    assert normalize_oracle_response(_Content("objet")) == "objet"  # type: ignore[arg-type]
    assert normalize_oracle_response(42) == "42"  # type: ignore[arg-type]


def test_oracle_settings_from_env() -> None:
    assert OracleSettings.from_env({}) is None

    settings = OracleSettings.from_env(
        {
            "TAGTRANSFER_ORACLE_URL": "http://oracle.local/v1",
            "TAGTRANSFER_ORACLE_MODEL": "m",
            "TAGTRANSFER_ORACLE_TIMEOUT": "5",
        }
    )

    assert settings is not None
    assert settings.model == "m"
    assert settings.timeout_seconds == 5.0
    assert settings.api_key is None


def test_oracle_settings_rejects_non_numeric_timeout() -> None:
    with pytest.raises(ValueError, match="TAGTRANSFER_ORACLE_TIMEOUT"):
        OracleSettings.from_env({"TAGTRANSFER_ORACLE_URL": "http://x", "TAGTRANSFER_ORACLE_TIMEOUT": "soon"})


@pytest.mark.anyio
async def test_http_oracle_posts_chat_completion() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"tags": []}'}}]})

    response = await _oracle(handler).invoke("Bonjour")

    assert normalize_oracle_response(response) == '{"tags": []}'
    assert str(seen[0].url) == "http://oracle.local/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    body = json.loads(seen[0].content)
    assert body["model"] == "test-model"
    assert body["messages"] == [{"role": "user", "content": "Bonjour"}]


@pytest.mark.anyio
async def test_http_oracle_wraps_failures() -> None:
    with pytest.raises(OracleError) as excinfo:
        await _oracle(lambda request: httpx.Response(503)).invoke("x")
    assert excinfo.value.status_code == 503

    with pytest.raises(OracleError, match="non-JSON"):
        await _oracle(lambda request: httpx.Response(200, text="<html>")).invoke("x")

    with pytest.raises(OracleError, match="choices"):
        await _oracle(lambda request: httpx.Response(200, json={"choices": []})).invoke("x")


def test_http_oracle_endpoint_is_not_doubled() -> None:
    oracle = HttpChatOracle(OracleSettings(base_url="http://oracle.local/v1/chat/completions/"))

    assert oracle.endpoint == "http://oracle.local/v1/chat/completions"


@pytest.mark.anyio
async def test_static_oracle_replays_script_and_repeats_last() -> None:
    oracle = StaticOracle(["first", OracleError("down"), "last"])

    assert await oracle.invoke("a") == "first"
    with pytest.raises(OracleError):
        await oracle.invoke("b")
    assert await oracle.invoke("c") == "last"
    assert await oracle.invoke("d") == "last"
    assert oracle.prompts == ["a", "b", "c", "d"]


@pytest.mark.anyio
async def test_static_oracle_without_script_raises() -> None:
    with pytest.raises(OracleError):
        await StaticOracle([]).invoke("x")
