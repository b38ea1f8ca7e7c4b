"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理修复引擎的所有配置项，支持从 .env 文件和环境变量读取。
涵盖 AI 服务、会话存储、调查循环、kubectl 与命令执行等模块的配置。

Uses Pydantic Settings to manage all configuration items of the remediation engine,
supporting reading from .env files and environment variables. Covers the AI service,
session storage, investigation loop, kubectl and command execution.
"""
import logging
from typing import Literal

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。
    显式传给引擎的参数（阈值、目录、注入的客户端）始终优先于这里的默认值。

    Field names map to same-named environment variables (case insensitive).
    Explicit arguments passed to the engine always take precedence over these defaults.
    """

    # AI 配置 (AI Service Configuration)：OpenAI 兼容接口
    ai_api_key: str = ""  # AI API 密钥 (AI API Key)
    ai_api_base: str = "https://api.openai.com/v1"  # AI API 基础 URL (AI API Base URL)
    ai_model: str = "gpt-4o"  # AI 模型名称 (AI Model Name)
    ai_max_tokens: int = 4096  # 单次调用最大 Token 数 (Max Tokens Per Call)
    ai_timeout_seconds: float = 120.0  # 单次调用超时 (Per-call Timeout)
    ai_max_retries: int = 2  # 失败重试次数 (Retries Before Reporting AI-service Error)

    # 会话存储 (Session Storage)
    session_dir: str = "./tmp/sessions"  # 会话文件目录 (Session File Directory)

    # 调查与决策 (Investigation and Decision)
    investigation_max_iterations: int = 20  # 调查循环迭代上限 (Investigation Iteration Ceiling)
    default_confidence_threshold: float = 0.8  # 自动执行的置信度阈值 (Confidence Gate)
    default_max_risk_level: Literal["low", "medium", "high"] = "low"  # 自动执行的最大风险 (Risk Gate)

    # kubectl 与命令执行 (kubectl and Command Execution)
    kubectl_path: str = "kubectl"  # kubectl 可执行文件 (kubectl Binary)
    kubectl_timeout_seconds: int = 30  # 单次诊断调用超时 (Per Diagnostic Call)
    command_timeout_seconds: int = 120  # 单条修复命令超时 (Per Remediation Command)
    # ⚠️ 开启后只记录不执行修复命令 (When enabled, remediation commands are recorded, not run)
    executor_dry_run: bool = False

    # HTTP 服务 (HTTP API Server)
    api_host: str = "127.0.0.1"  # 监听地址 (Bind Host)
    api_port: int = 8000  # 监听端口 (Bind Port)

    log_level: str = "INFO"  # 日志级别 (Root Log Level)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # Pydantic 配置：自动加载 .env 文件 (Pydantic Config: Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

if not settings.ai_api_key:
    logger.warning(
        "AI_API_KEY 未设置，调查将无法调用 AI 服务（mock 模式除外）。"
        " | AI_API_KEY not set, investigations cannot reach the AI service unless a mock client is used."
    )
