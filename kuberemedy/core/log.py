"""日志初始化 (Logging bootstrap)。CLI 与 FastAPI 应用启动时各调用一次。"""
import logging
from typing import Optional

from kuberemedy.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Setup root logging for the engine."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
    )
    # httpx 每次请求都打 INFO，压低到 WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
