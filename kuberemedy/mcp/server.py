"""
kube-remedy MCP Server (Model Context Protocol Server)

Exposes the remediation engine to AI agents as a single `remediate` tool.
The calling agent describes an issue, reviews the analysis and then either lets the
server execute the fix (choice 1) or runs the commands itself and calls back with
`executedCommands` (choice 2) so the fix can be validated.
"""
import logging
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from kuberemedy.core.deps import get_orchestrator
from kuberemedy.core.exceptions import RemediationError

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp_server = FastMCP("kube-remedy")


def _error_document(exc: RemediationError) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "status": "failed",
        "error": exc.error,
        "message": exc.message,
        "detail": exc.detail,
    }
    if exc.session_id:
        doc["sessionId"] = exc.session_id
    return doc


async def run_remediate(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Run the engine entry point and render business errors as a failed document."""
    try:
        response = await get_orchestrator().remediate(arguments)
    except RemediationError as e:
        logger.warning("remediate tool failed: %s", e.message)
        return _error_document(e)
    return response.to_json_dict()


@mcp_server.tool()
async def remediate(
    issue: Optional[str] = None,
    mode: str = "manual",
    confidenceThreshold: Optional[float] = None,
    maxRiskLevel: Optional[str] = None,
    executeChoice: Optional[int] = None,
    sessionId: Optional[str] = None,
    executedCommands: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Investigate a Kubernetes issue and propose (or apply) a remediation

    Args:
        issue: Natural-language description of the symptom. Required unless continuing a session.
        mode: "manual" (always ask for approval) or "automatic" (execute when thresholds allow)
        confidenceThreshold: Minimum confidence for automatic execution (default 0.8)
        maxRiskLevel: Highest risk allowed for automatic execution: low, medium or high (default low)
        executeChoice: 1 = execute now, 2 = execute via the calling agent; requires sessionId
        sessionId: Session returned by a previous call
        executedCommands: With executeChoice 2, the commands the agent actually ran

    Returns:
        Dict containing status, analysis, remediation plan, execution results and guidance
    """
    arguments = {
        "issue": issue,
        "mode": mode,
        "confidenceThreshold": confidenceThreshold,
        "maxRiskLevel": maxRiskLevel,
        "executeChoice": executeChoice,
        "sessionId": sessionId,
        "executedCommands": executedCommands,
    }
    return await run_remediate({k: v for k, v in arguments.items() if v is not None})


def start_mcp_server(transport: str = "stdio", host: str = "127.0.0.1", port: int = 8003):
    """Start the MCP server"""
    if transport == "stdio":
        logger.info("Starting kube-remedy MCP Server on stdio")
        mcp_server.run()
    else:
        logger.info("Starting kube-remedy MCP Server on %s:%s (%s)", host, port, transport)
        mcp_server.run(transport=transport, host=host, port=port)


__all__ = ["mcp_server", "remediate", "run_remediate", "start_mcp_server"]
