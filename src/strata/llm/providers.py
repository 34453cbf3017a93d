"""Chat backend providers (OpenAI-compatible, Anthropic, Ollama)."""

from __future__ import annotations

import os
from typing import Any

import httpx

from strata.exceptions import ConfigurationError, SummarizationError
from strata.llm.backends import ChatResponse, Message


class _HTTPChatBackend:
    api_key_env = ""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "",
        base_url: str = "",
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        self.api_key = api_key or (os.environ.get(self.api_key_env, "") if self.api_key_env else "")
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client: httpx.AsyncClient | None = None
        self._stats = {"calls": 0, "input_tokens": 0, "output_tokens": 0}

    def _headers(self) -> dict[str, str]:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self.api_key_env and not self.api_key:
            raise ConfigurationError(f"{self.api_key_env} is required for summarization")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
            )
        return self._client

    def _payload(self, resp: httpx.Response) -> dict[str, Any]:
        data = resp.json()
        if not isinstance(data, dict):
            raise SummarizationError(f"malformed chat response from {self.model}")
        return data

    @staticmethod
    def _usage(data: dict[str, Any]) -> dict[str, Any]:
        usage = data.get("usage")
        return usage if isinstance(usage, dict) else {}

    def _count(self, input_tokens: Any, output_tokens: Any) -> None:
        self._stats["calls"] += 1
        self._stats["input_tokens"] += int(input_tokens or 0)
        self._stats["output_tokens"] += int(output_tokens or 0)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "total_tokens": self._stats["input_tokens"] + self._stats["output_tokens"],
        }

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class OpenAIBackend(_HTTPChatBackend):
    """``/chat/completions`` backend; defaults target DeepSeek."""

    api_key_env = "DEEPSEEK_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "deepseek-chat",
        base_url: str = "https://api.deepseek.com",
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        super().__init__(api_key, model, base_url, timeout, temperature, max_tokens)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        client = await self._get_client()
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature if temperature is not None else self.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        resp = await client.post("/chat/completions", json=body)
        resp.raise_for_status()
        data = self._payload(resp)
        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else None
        if not isinstance(choice, dict) or not isinstance(choice.get("message"), dict):
            raise SummarizationError(f"malformed chat completion from {self.model}")
        usage = self._usage(data)
        self._count(usage.get("prompt_tokens"), usage.get("completion_tokens"))
        return ChatResponse(
            content=str(choice["message"].get("content") or ""),
            model=str(data.get("model", self.model)),
            usage=usage,
            finish_reason=str(choice.get("finish_reason", "")),
            raw=data,
        )


class AnthropicBackend(_HTTPChatBackend):
    api_key_env = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-haiku-latest",
        base_url: str = "https://api.anthropic.com/v1",
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        super().__init__(api_key, model, base_url, timeout, temperature, max_tokens)

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"}

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        client = await self._get_client()
        system = ""
        chat_msgs: list[dict[str, str]] = []
        for m in messages:
            if m.role == "system":
                system += (m.content + "\n")
            else:
                role = "assistant" if m.role == "assistant" else "user"
                chat_msgs.append({"role": role, "content": m.content})
        body: dict[str, Any] = {
            "model": self.model,
            "system": system.strip() if system else None,
            "messages": chat_msgs,
            "temperature": temperature if temperature is not None else self.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.max_tokens,
        }
        resp = await client.post("/messages", json={k: v for k, v in body.items() if v is not None})
        resp.raise_for_status()
        data = self._payload(resp)
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise SummarizationError(f"malformed message response from {self.model}")
        text = "".join(
            str(blk.get("text", ""))
            for blk in blocks
            if isinstance(blk, dict) and blk.get("type") == "text"
        )
        usage = self._usage(data)
        self._count(usage.get("input_tokens"), usage.get("output_tokens"))
        return ChatResponse(
            content=text,
            model=self.model,
            usage=usage,
            finish_reason=str(data.get("stop_reason", "")),
            raw=data,
        )


class OllamaBackend(_HTTPChatBackend):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "llama3.1:8b-instruct",
        base_url: str = "http://127.0.0.1:11434",
        timeout: float = 120.0,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> None:
        super().__init__(api_key, model, base_url, timeout, temperature, max_tokens)

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        client = await self._get_client()
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {
                "temperature": temperature if temperature is not None else self.temperature,
                "num_predict": max_tokens if max_tokens is not None else self.max_tokens,
            },
        }
        if json_mode:
            body["format"] = "json"
        resp = await client.post("/api/chat", json=body)
        resp.raise_for_status()
        data = self._payload(resp)
        msg = data.get("message")
        if not isinstance(msg, dict):
            raise SummarizationError(f"malformed ollama chat response from {self.model}")
        self._count(data.get("prompt_eval_count"), data.get("eval_count"))
        return ChatResponse(
            content=str(msg.get("content", "")),
            model=self.model,
            finish_reason=str(data.get("done_reason", "")),
            raw=data,
        )
