"""Semantic oracle contract, response normalization and the HTTP chat client."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol, Union

import httpx
from pydantic import BaseModel, ConfigDict

from tagtransfer.utils.errors import OracleError

logger = logging.getLogger("tagtransfer.oracle")


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class Structured:
    """Structured oracle answer exposing `content` and/or `text`."""

    content: str | None = None
    text: str | None = None


OracleResponse = Union[PlainText, Structured, str, dict, None]


class Oracle(Protocol):
    async def invoke(self, prompt: str) -> OracleResponse: ...


def normalize_oracle_response(response: OracleResponse) -> str:
    """Reduce any supported response shape to one string; `content` wins over `text`."""

    if response is None:
        return ""
    if isinstance(response, str):
        return response
    if isinstance(response, PlainText):
        return response.text
    if isinstance(response, dict):
        for key in ("content", "text"):
            value = response.get(key)
            if isinstance(value, str):
                return value
        return json.dumps(response, ensure_ascii=False)
    for attribute in ("content", "text"):
        value = getattr(response, attribute, None)
        if isinstance(value, str):
            return value
    try:
        return json.dumps(response, ensure_ascii=False)
    except TypeError:
        return str(response)


class OracleSettings(BaseModel):
    """Connection settings for an OpenAI-compatible chat-completions endpoint."""

    model_config = ConfigDict(extra="forbid")

    base_url: str
    api_key: str | None = None
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0
    temperature: float = 0.1

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> OracleSettings | None:
        env = os.environ if environ is None else environ
        base_url = env.get("TAGTRANSFER_ORACLE_URL", "").strip()
        if not base_url:
            return None
        values: dict[str, Any] = {"base_url": base_url}
        if env.get("TAGTRANSFER_ORACLE_API_KEY"):
            values["api_key"] = env["TAGTRANSFER_ORACLE_API_KEY"]
        if env.get("TAGTRANSFER_ORACLE_MODEL"):
            values["model"] = env["TAGTRANSFER_ORACLE_MODEL"]
        if env.get("TAGTRANSFER_ORACLE_TIMEOUT"):
            try:
                values["timeout_seconds"] = float(env["TAGTRANSFER_ORACLE_TIMEOUT"])
            except ValueError as exc:
                raise ValueError("TAGTRANSFER_ORACLE_TIMEOUT must be a number") from exc
        return cls(**values)


class HttpChatOracle:
    """One chat-completions call per prompt; no retry."""

    def __init__(self, settings: OracleSettings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    @property
    def endpoint(self) -> str:
        base = self.settings.base_url.rstrip("/")
        if base.endswith("/chat/completions"):
            return base
        return f"{base}/chat/completions"

    async def invoke(self, prompt: str) -> OracleResponse:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        payload = {
            "model": self.settings.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.settings.temperature,
        }

        logger.debug("oracle call: model=%s prompt_chars=%d", self.settings.model, len(prompt))
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.endpoint, headers=headers, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            raise OracleError(
                f"Oracle returned HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise OracleError(f"Oracle request failed: {exc}") from exc
        except ValueError as exc:
            raise OracleError("Oracle returned a non-JSON body") from exc

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise OracleError("Oracle response has no choices[0].message.content") from exc
        return Structured(content=content if isinstance(content, str) else None)


class StaticOracle:
    """Replays scripted responses in order; exceptions in the script are raised.

    Once the script is exhausted the last entry repeats.
    """

    def __init__(self, responses: Iterable[OracleResponse | Exception]) -> None:
        self._responses = list(responses)
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def invoke(self, prompt: str) -> OracleResponse:
        self.prompts.append(prompt)
        if not self._responses:
            raise OracleError("StaticOracle has no scripted response")
        position = min(len(self.prompts) - 1, len(self._responses) - 1)
        response = self._responses[position]
        if isinstance(response, Exception):
            raise response
        return response
