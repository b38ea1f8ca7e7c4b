"""
调查用 AI 客户端。

调用 OpenAI 兼容的 /chat/completions 接口，带 function-calling 工具定义；
失败按 ai_max_retries 重试，重试耗尽后抛出一个 AIServiceError。
支持 mock 模式（按顺序返回预设的 ChatTurn）用于测试和离线运行。
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from kuberemedy.core.config import settings
from kuberemedy.core.exceptions import AIServiceError
from .models import ChatTurn, ToolCall

logger = logging.getLogger(__name__)


def _malformed(reason: str, data: Any) -> AIServiceError:
    return AIServiceError(
        f"Malformed AI response: {reason}", detail=json.dumps(data, default=str)[:2000]
    )


def _parse_chat_turn(data: dict[str, Any]) -> ChatTurn:
    """把 chat/completions 响应体转为 ChatTurn。结构不符时抛 AIServiceError。"""
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise _malformed("no message", data) from e
    if not isinstance(message, dict):
        raise _malformed("message is not an object", data)

    raw_calls = message.get("tool_calls") or []
    if not isinstance(raw_calls, list):
        raise _malformed("tool_calls is not a list", data)
    content = message.get("content") or ""
    if not isinstance(content, str):
        raise _malformed("content is not a string", data)

    tool_calls = []
    for raw in raw_calls:
        function = raw.get("function") if isinstance(raw, dict) else None
        if not isinstance(function, dict) or not isinstance(function.get("name"), str):
            raise _malformed("tool call without a function name", data)
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            # 个别兼容实现直接返回对象
            arguments = json.dumps(arguments if arguments is not None else {})
        tool_calls.append(ToolCall(
            id=str(raw.get("id") or f"call_{len(tool_calls)}"),
            name=function["name"],
            arguments=arguments,
        ))
    return ChatTurn(content=content, tool_calls=tool_calls)


class RemediationAIClient:
    """调查对话的 AI 客户端，未显式传参时从全局配置读取。"""

    def __init__(
        self,
        api_key: str = "",
        api_base: str = "",
        model: str = "",
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        mock_responses: Optional[list[ChatTurn]] = None,
    ) -> None:
        self.api_key = api_key or settings.ai_api_key
        self.api_base = (api_base or settings.ai_api_base).rstrip("/")
        self.model = model or settings.ai_model
        self.max_tokens = max_tokens if max_tokens is not None else settings.ai_max_tokens
        self.timeout = timeout if timeout is not None else settings.ai_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.ai_max_retries
        self._mock_responses = list(mock_responses) if mock_responses is not None else None
        self._mock_index = 0
        self.requests: list[list[dict[str, Any]]] = []

    @property
    def is_mock(self) -> bool:
        return self._mock_responses is not None

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ChatTurn:
        """发送一轮对话，返回 AI 的回复（工具调用或最终消息）。"""
        if self._mock_responses is not None:
            self.requests.append([dict(m) for m in messages])
            if self._mock_index >= len(self._mock_responses):
                raise AIServiceError("Mock AI responses exhausted")
            turn = self._mock_responses[self._mock_index]
            self._mock_index += 1
            return turn

        if not self.api_key:
            raise AIServiceError("AI API key not configured. Set AI_API_KEY environment variable.")

        data = await self._call_api(messages, tools)
        return _parse_chat_turn(data)

    async def _call_api(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]],
    ) -> dict[str, Any]:
        url = f"{self.api_base}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": 0.1,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
                    response.raise_for_status()
                    return response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning("AI API call attempt %d failed: %s", attempt + 1, str(e))

        logger.error("AI API call failed after %d attempts", self.max_retries + 1)
        raise AIServiceError(
            f"AI service unreachable after {self.max_retries + 1} attempts",
            detail=str(last_error),
        ) from last_error
