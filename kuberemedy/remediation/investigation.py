"""
调查驱动：有界的 AI 工具调用循环。

每轮 AI 要么请求若干工具调用，要么给出最终消息。工具调用由外部执行器完成，结果（成功或失败）
作为 tool 消息追加到对话中供下一轮参考；单个工具失败不会中断循环。
到达迭代上限的最后一轮会追加收尾提示并不再提供工具，循环本身不因耗尽而报错。
AI 服务调用失败（AIServiceError）直接向上抛出，整个调查中止。
"""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from kuberemedy.core.config import settings
from kuberemedy.core.exceptions import InvestigationError
from .models import ChatTurn, InvestigationResult, ToolCall, ToolCallRecord

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[Any]]

MAX_TOOL_RESULT_CHARS = 20_000

WRAP_UP_MESSAGE = (
    "You have reached the maximum number of investigation steps. Please provide your final "
    "summary NOW in the required JSON format based on all findings gathered so far. "
    "Do not request any more tool calls."
)

INVESTIGATION_SYSTEM_PROMPT = """You are an expert Kubernetes site reliability engineer investigating a reported issue in a live cluster.

Investigation rules:
- Gather evidence with the provided tools before drawing conclusions. All tools are read-only; patch, apply and delete tools only run a server-side dry run.
- Start broad (events, resource lists) and narrow down to the failing workload (describe, logs, resource JSON).
- A failed tool call is evidence too: a missing resource or namespace may be the answer.
- Validate any patch, apply or delete you intend to propose with the matching dry-run tool.
- Stop calling tools as soon as you have enough evidence.

When the investigation is finished, reply with ONE JSON object and nothing else, in this format:
{
  "issueStatus": "active" | "resolved" | "non_existent",
  "rootCause": "concise description of the root cause",
  "confidence": 0.0 to 1.0,
  "factors": ["evidence supporting the diagnosis", "..."],
  "remediation": {
    "summary": "what the fix does",
    "actions": [
      {
        "description": "what this step does",
        "command": "complete kubectl command to run, or omit for manual steps",
        "risk": "low" | "medium" | "high",
        "rationale": "why this step is needed"
      }
    ],
    "risk": "low" | "medium" | "high"
  },
  "validationIntent": "a short issue description to re-check after the fix, e.g. 'check the status of pod X in namespace Y'"
}

Use "resolved" when the symptom was real but is no longer present, and "non_existent" when the reported resource or symptom does not exist. In both cases return an empty actions list.
Report high confidence only when the evidence is unambiguous. The overall remediation risk is the highest risk among its actions."""


def build_user_message(issue: str) -> str:
    return (
        f"Issue reported by the operator:\n{issue}\n\n"
        "Investigate the cluster and produce the final analysis JSON."
    )


class ChatClient(Protocol):
    async def chat(
        self, messages: list[dict[str, Any]], tools: Optional[list[dict[str, Any]]] = None
    ) -> ChatTurn:
        ...


def _assistant_message(turn: ChatTurn) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": turn.content or None}
    if turn.tool_calls:
        message["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in turn.tool_calls
        ]
    return message


def _tool_message(call: ToolCall, payload: Any) -> dict[str, Any]:
    content = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    return {
        "role": "tool",
        "tool_call_id": call.id,
        "content": content[:MAX_TOOL_RESULT_CHARS],
    }


class InvestigationDriver:
    """驱动一次调查对话。"""

    def __init__(
        self,
        ai_client: ChatClient,
        tool_executor: ToolExecutor,
        tools: list[dict[str, Any]],
        max_iterations: Optional[int] = None,
        system_prompt: str = INVESTIGATION_SYSTEM_PROMPT,
    ) -> None:
        self.ai_client = ai_client
        self.tool_executor = tool_executor
        self.tools = tools
        self.max_iterations = max_iterations or settings.investigation_max_iterations
        self.system_prompt = system_prompt
        self._tool_names = {t["function"]["name"] for t in tools}

    async def run(self, issue: str) -> InvestigationResult:
        """执行调查；没有任何最终文本时抛 InvestigationError。"""
        result = await self.tool_loop(build_user_message(issue))
        if not result.final_message.strip():
            raise InvestigationError(
                "Investigation produced no final message",
                detail=f"iterations={result.iterations}, tool_calls={len(result.tool_calls_executed)}",
            )
        logger.info(
            "Investigation finished after %d iterations, %d tool calls",
            result.iterations,
            len(result.tool_calls_executed),
        )
        return result

    async def tool_loop(self, user_message: str) -> InvestigationResult:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": user_message},
        ]
        executed: list[ToolCallRecord] = []
        last_text = ""

        for iteration in range(1, self.max_iterations + 1):
            is_last = iteration == self.max_iterations
            if is_last and iteration > 1:
                messages.append({"role": "user", "content": WRAP_UP_MESSAGE})

            turn = await self.ai_client.chat(messages, tools=None if is_last else self.tools)
            messages.append(_assistant_message(turn))
            if turn.content.strip():
                last_text = turn.content

            if turn.is_terminal or is_last:
                if not turn.is_terminal:
                    logger.warning(
                        "Iteration ceiling %d reached with %d pending tool calls",
                        self.max_iterations,
                        len(turn.tool_calls),
                    )
                return InvestigationResult(
                    final_message=last_text,
                    iterations=iteration,
                    tool_calls_executed=executed,
                )

            for call in turn.tool_calls:
                payload = await self._execute_tool_call(call, executed)
                messages.append(_tool_message(call, payload))

        # max_iterations < 1
        return InvestigationResult(final_message=last_text, iterations=0, tool_calls_executed=executed)

    async def _execute_tool_call(self, call: ToolCall, executed: list[ToolCallRecord]) -> Any:
        if call.name not in self._tool_names:
            logger.warning("AI requested unknown tool: %s", call.name)
            return {
                "error": f"Unknown tool '{call.name}'. Available tools: {', '.join(sorted(self._tool_names))}"
            }

        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            logger.warning("Undecodable arguments for %s: %s", call.name, e)
            return {"error": f"Tool arguments are not valid JSON: {e.msg}"}
        if not isinstance(args, dict):
            return {"error": "Tool arguments must be a JSON object"}

        executed.append(ToolCallRecord(tool=call.name, args=args))
        logger.debug("Tool call %s(%s)", call.name, args)
        try:
            return await self.tool_executor(call.name, args)
        except Exception as e:
            # 执行器本身出错也只作为证据返回给 AI
            logger.warning("Tool %s raised: %s", call.name, e)
            return {"error": f"Error executing tool '{call.name}': {e}"}
