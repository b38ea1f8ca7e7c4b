"""测试用的分析 JSON 与 AI 回复构造器。"""
import json

from kuberemedy.remediation.models import ChatTurn, ToolCall


def make_analysis(**overrides) -> dict:
    """构造一份合法的分析 dict，overrides 覆盖顶层字段。"""
    data = {
        "issueStatus": "active",
        "rootCause": "Container exits with OOMKilled: memory limit 64Mi is too low",
        "confidence": 0.92,
        "factors": ["lastState.terminated.reason=OOMKilled", "restartCount=12"],
        "remediation": {
            "summary": "Raise the memory limit of the api deployment",
            "actions": [
                {
                    "description": "Increase memory limit to 256Mi",
                    "command": "kubectl set resources deployment/api -n shop --limits=memory=256Mi",
                    "risk": "low",
                    "rationale": "The container is killed at its 64Mi limit",
                }
            ],
            "risk": "low",
        },
        "validationIntent": "check whether pod api in namespace shop is still crashlooping",
    }
    data.update(overrides)
    return data


def resolved_analysis() -> dict:
    return make_analysis(
        issueStatus="resolved",
        rootCause="Pod api is Running with 0 restarts in the last hour",
        confidence=0.95,
        factors=["status.phase=Running"],
        remediation={"summary": "No action needed", "actions": [], "risk": "low"},
        validationIntent=None,
    )


def final_turn(analysis: dict, prose: str = "Here is my analysis:\n") -> ChatTurn:
    return ChatTurn(content=prose + json.dumps(analysis) + "\nLet me know if you need more.")


def tool_turn(name: str, args: dict, call_id: str = "call_1") -> ChatTurn:
    return ChatTurn(tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(args))])
