"""
调查阶段可用的 kubectl 诊断工具。

工具目录以 OpenAI function-calling 格式提供给 AI；KubectlToolExecutor 负责把工具调用
翻译成 kubectl 参数向量、做只读白名单检查、不经 shell 执行，并返回
{"success": True, "data": ...} 或 {"success": False, "error": ..., "suggestion": ...}。
工具失败是证据而不是异常：execute() 不抛出任何操作错误。
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from kuberemedy.core.config import settings
from kuberemedy.core.exceptions import CommandFailedError
from .safety import check_read_only

logger = logging.getLogger(__name__)

# (argv, stdin) -> stdout；失败时抛 CommandFailedError
KubectlRunner = Callable[[list[str], Optional[str]], Awaitable[str]]

MAX_OUTPUT_CHARS = 50_000


def _tool(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_NAMESPACE = {"type": "string", "description": "Kubernetes namespace. Omit for cluster-scoped resources."}
_EXTRA_ARGS = {"type": "array", "items": {"type": "string"}}

KUBECTL_INVESTIGATION_TOOLS: list[dict[str, Any]] = [
    _tool(
        "kubectl_api_resources",
        "List the API resource types available in the cluster (kinds, API groups, namespaced or not). "
        "Use it to discover what can be investigated.",
        {},
        [],
    ),
    _tool(
        "kubectl_get",
        "List resources and their current state in table format. Output format flags "
        "(-o yaml, -o json, ...) are stripped; use kubectl_describe or kubectl_get_resource_json for details.",
        {
            "resource": {"type": "string", "description": 'Resource type or type/name, e.g. "pods", "pod/my-pod".'},
            "namespace": _NAMESPACE,
            "args": {**_EXTRA_ARGS, "description": 'Filtering arguments only, e.g. ["--selector=app=web"], ["--all-namespaces"].'},
        },
        ["resource"],
    ),
    _tool(
        "kubectl_describe",
        "Show detailed configuration, status and recent events of a specific resource.",
        {
            "resource": {"type": "string", "description": 'Resource with name, e.g. "deployment/my-app".'},
            "namespace": _NAMESPACE,
        },
        ["resource"],
    ),
    _tool(
        "kubectl_logs",
        "Get container logs from a pod. Use --previous for logs of a crashed container.",
        {
            "resource": {"type": "string", "description": 'Pod name, e.g. "my-pod" or "pod/my-pod".'},
            "namespace": {"type": "string", "description": "Namespace of the pod."},
            "args": {**_EXTRA_ARGS, "description": 'Extra arguments, e.g. ["--previous"], ["--tail=50"], ["-c", "sidecar"].'},
        },
        ["resource", "namespace"],
    ),
    _tool(
        "kubectl_events",
        "Get cluster events (scheduling failures, probe failures, OOM kills, image pull errors).",
        {
            "namespace": _NAMESPACE,
            "args": {**_EXTRA_ARGS, "description": 'Extra arguments, e.g. ["--field-selector=involvedObject.name=my-pod"].'},
        },
        [],
    ),
    _tool(
        "kubectl_get_resource_json",
        "Get a single resource as JSON (metadata, spec, status). Optionally return one top-level field only.",
        {
            "resource": {"type": "string", "description": 'Resource in kind/name form, e.g. "deployment/my-app".'},
            "namespace": _NAMESPACE,
            "field": {"type": "string", "description": 'Optional top-level field: "spec", "status" or "metadata".'},
        },
        ["resource"],
    ),
    _tool(
        "kubectl_get_crd_schema",
        "Get the definition of a CustomResourceDefinition including its OpenAPI v3 schema.",
        {"crdName": {"type": "string", "description": 'Full CRD name, e.g. "clusters.postgresql.cnpg.io".'}},
        ["crdName"],
    ),
    _tool(
        "kubectl_patch_dryrun",
        "Validate that a patch would be accepted by the cluster (server-side dry run, nothing is changed).",
        {
            "resource": {"type": "string", "description": 'Resource to patch, e.g. "deployment/my-app".'},
            "namespace": _NAMESPACE,
            "patch": {"type": "string", "description": 'Patch content as JSON, e.g. {"spec":{"replicas":3}}.'},
            "patchType": {"type": "string", "enum": ["strategic", "merge", "json"]},
        },
        ["resource", "patch"],
    ),
    _tool(
        "kubectl_apply_dryrun",
        "Validate that a manifest would be accepted by the cluster (server-side dry run, nothing is changed).",
        {
            "manifest": {"type": "string", "description": "YAML manifest to apply."},
            "namespace": _NAMESPACE,
        },
        ["manifest"],
    ),
    _tool(
        "kubectl_delete_dryrun",
        "Validate that a delete would be accepted by the cluster (server-side dry run, nothing is deleted).",
        {
            "resource": {"type": "string", "description": 'Resource to delete, e.g. "pod/my-pod".'},
            "namespace": _NAMESPACE,
        },
        ["resource"],
    ),
]

TOOL_NAMES = frozenset(t["function"]["name"] for t in KUBECTL_INVESTIGATION_TOOLS)


class ToolInputError(ValueError):
    """工具参数缺失或非法。"""


def error_suggestion(error_message: str) -> Optional[str]:
    """根据 kubectl 报错给出排查建议。"""
    lower = error_message.lower()
    if "namespace" in lower and "not found" in lower:
        return "Namespace does not exist. Try listing available namespaces first."
    if "not found" in lower:
        return "Resource may not exist or may be in a different namespace. Try listing available resources first."
    if "forbidden" in lower:
        return "Insufficient permissions. Check RBAC configuration for read access to this resource."
    if "connection refused" in lower or "timeout" in lower or "timed out" in lower:
        return "Cannot connect to Kubernetes cluster. Verify cluster connectivity and kubectl configuration."
    return None


def strip_output_flags(args: list[str]) -> list[str]:
    """去掉 -o/--output 之类的输出格式参数，kubectl_get 固定返回表格。"""
    kept: list[str] = []
    skip_value = False
    for arg in args:
        if skip_value:
            skip_value = False
            continue
        lower = arg.lower()
        if lower in ("-o", "--output"):
            skip_value = True
            continue
        if lower.startswith("-o") or lower.startswith("--output") or "=json" in lower or "=yaml" in lower:
            continue
        kept.append(arg)
    return kept


def _require(args: dict[str, Any], key: str, tool_name: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolInputError(f"{tool_name} requires a {key} parameter")
    return value


def _extra_args(args: dict[str, Any]) -> list[str]:
    extra = args.get("args") or []
    if not isinstance(extra, list) or not all(isinstance(a, str) for a in extra):
        raise ToolInputError("args must be a list of strings")
    return list(extra)


def _with_namespace(argv: list[str], args: dict[str, Any]) -> list[str]:
    namespace = args.get("namespace")
    if namespace:
        argv += ["-n", str(namespace)]
    return argv


def build_command(tool_name: str, args: dict[str, Any]) -> tuple[list[str], Optional[str]]:
    """工具调用 → (kubectl 参数向量, stdin)。"""
    if tool_name == "kubectl_api_resources":
        return ["api-resources"], None

    if tool_name == "kubectl_get":
        resource = _require(args, "resource", tool_name)
        argv = _with_namespace(["get", resource], args)
        return argv + strip_output_flags(_extra_args(args)), None

    if tool_name == "kubectl_describe":
        resource = _require(args, "resource", tool_name)
        return _with_namespace(["describe", resource], args), None

    if tool_name == "kubectl_logs":
        resource = _require(args, "resource", tool_name)
        namespace = _require(args, "namespace", tool_name)
        return ["logs", resource, "-n", namespace] + _extra_args(args), None

    if tool_name == "kubectl_events":
        # kubectl events 子命令在老版本不存在，统一走 get events
        argv = _with_namespace(["get", "events"], args)
        return argv + _extra_args(args), None

    if tool_name == "kubectl_get_resource_json":
        resource = _require(args, "resource", tool_name)
        return _with_namespace(["get", resource, "-o", "json"], args), None

    if tool_name == "kubectl_get_crd_schema":
        crd_name = _require(args, "crdName", tool_name)
        return ["get", "crd", crd_name, "-o", "json"], None

    if tool_name == "kubectl_patch_dryrun":
        resource = _require(args, "resource", tool_name)
        patch = _require(args, "patch", tool_name)
        argv = _with_namespace(["patch", resource, "--dry-run=server"], args)
        patch_type = args.get("patchType") or "strategic"
        if patch_type in ("json", "merge"):
            argv.append(f"--type={patch_type}")
        elif patch_type != "strategic":
            raise ToolInputError(f"Unknown patchType: {patch_type}")
        return argv + ["-p", patch], None

    if tool_name == "kubectl_apply_dryrun":
        manifest = _require(args, "manifest", tool_name)
        argv = _with_namespace(["apply", "--dry-run=server", "-f", "-"], args)
        return argv, manifest

    if tool_name == "kubectl_delete_dryrun":
        resource = _require(args, "resource", tool_name)
        return _with_namespace(["delete", resource, "--dry-run=server"], args), None

    raise ToolInputError(f"Unknown kubectl tool: {tool_name}")


class KubectlToolExecutor:
    """执行调查工具调用。runner 可注入，测试中无需真实集群。"""

    def __init__(
        self,
        kubectl_path: Optional[str] = None,
        timeout: Optional[float] = None,
        runner: Optional[KubectlRunner] = None,
    ) -> None:
        self.kubectl_path = kubectl_path or settings.kubectl_path
        self.timeout = timeout if timeout is not None else settings.kubectl_timeout_seconds
        self._runner = runner or self._run_kubectl

    async def execute(self, tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        try:
            argv, stdin = build_command(tool_name, args)
        except ToolInputError as e:
            return {"success": False, "error": str(e)}

        is_safe, reason = check_read_only(argv)
        if not is_safe:
            logger.warning("Blocked kubectl call from %s: %s", tool_name, reason)
            return {"success": False, "error": reason}

        logger.debug("kubectl %s", " ".join(argv))
        try:
            output = await self._runner(argv, stdin)
        except CommandFailedError as e:
            message = str(e)
            result: dict[str, Any] = {"success": False, "error": message}
            suggestion = error_suggestion(message)
            if suggestion:
                result["suggestion"] = suggestion
            return result

        if tool_name == "kubectl_get_resource_json":
            return self._select_field(output, args.get("field"))
        return {"success": True, "data": output[:MAX_OUTPUT_CHARS]}

    @staticmethod
    def _select_field(output: str, field: Optional[str]) -> dict[str, Any]:
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError as e:
            return {
                "success": False,
                "error": f"Failed to parse kubectl output as JSON: {e.msg}",
                "data": output[:500],
            }
        if field:
            if not isinstance(parsed, dict) or field not in parsed:
                available = ", ".join(parsed) if isinstance(parsed, dict) else ""
                return {
                    "success": False,
                    "error": f"Field '{field}' not found in resource",
                    "suggestion": f"Available top-level fields: {available}",
                }
            parsed = parsed[field]
        return {"success": True, "data": json.dumps(parsed, indent=2)[:MAX_OUTPUT_CHARS]}

    async def _run_kubectl(self, argv: list[str], stdin: Optional[str] = None) -> str:
        """不经 shell 直接执行 kubectl。"""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.kubectl_path,
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandFailedError(f"Failed to start {self.kubectl_path}: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(stdin.encode() if stdin is not None else None),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            raise CommandFailedError(f"kubectl timed out after {self.timeout}s")

        if proc.returncode != 0:
            stderr = stderr_bytes.decode(errors="replace").strip()
            raise CommandFailedError(
                stderr or f"kubectl exited with code {proc.returncode}",
                exit_code=proc.returncode,
            )
        return stdout_bytes.decode(errors="replace")
