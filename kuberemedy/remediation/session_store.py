"""
会话存储：一次修复尝试一个记录，按 sessionId 索引。

- create：新建记录，已存在则失败
- read：读取记录，不存在则 SessionNotFoundError
- update：读取 → 合并变更 → 刷新 updated → 整体原子替换（临时文件 + rename）

写入都是整条记录替换，没有跨进程的字段级合并；两个进程并发更新同一会话时后写者覆盖前者。
"""
from __future__ import annotations

import abc
import logging
import os
import re
import secrets
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from kuberemedy.core.exceptions import (
    SessionExistsError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)
from .models import Session

UTC = timezone.utc

logger = logging.getLogger(__name__)

SESSION_ID_PREFIX = "rem"
SESSION_ID_RE = re.compile(r"^rem_\d{8}T\d{12}_[0-9a-f]{16}$")


def generate_session_id() -> str:
    """时间有序 + 随机后缀，例如 rem_20261018T231300123456_9f86d081884c7d65。"""
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
    return f"{SESSION_ID_PREFIX}_{stamp}_{secrets.token_hex(8)}"


def validate_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not SESSION_ID_RE.match(session_id):
        raise ValidationError(
            "Malformed session reference",
            detail=f"sessionId {session_id!r} does not match rem_<timestamp>_<hex>",
        )
    return session_id


class SessionStore(abc.ABC):
    """会话存储接口。实现可以是文件、数据库或内存，但都必须保证整条记录原子替换。"""

    @abc.abstractmethod
    def create(self, session: Session) -> Session:
        ...

    @abc.abstractmethod
    def read(self, session_id: str) -> Session:
        ...

    @abc.abstractmethod
    def _replace(self, session: Session) -> None:
        ...

    @abc.abstractmethod
    def list_ids(self) -> list[str]:
        ...

    def update(self, session_id: str, changes: dict[str, Any]) -> Session:
        """合并变更（按 Session 的 Python 字段名）并刷新 updated。"""
        current = self.read(session_id)
        unknown = set(changes) - set(Session.model_fields)
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        merged = current.model_copy(update={**changes, "updated": datetime.now(UTC)})
        # model_copy 不做校验，这里重新校验一次
        merged = Session.model_validate(merged.model_dump())
        self._replace(merged)
        return merged


class FileSessionStore(SessionStore):
    """每个会话一个 <sessionId>.json 文件。"""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{validate_session_id(session_id)}.json"

    def _ensure_dir(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Session directory not writable: {self.directory}", detail=str(e)) from e

    def create(self, session: Session) -> Session:
        self._ensure_dir()
        path = self._path(session.session_id)
        if path.exists():
            raise SessionExistsError(f"Session already exists: {session.session_id}")
        self._write_atomic(path, session)
        logger.debug("Session created: %s", path)
        return session

    def read(self, session_id: str) -> Session:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session not found: {session_id}")
        try:
            return Session.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageError(f"Session file unreadable: {session_id}", detail=str(e)) from e
        except PydanticValidationError as e:
            raise StorageError(f"Session file corrupt: {session_id}", detail=str(e)) from e

    def _replace(self, session: Session) -> None:
        self._ensure_dir()
        self._write_atomic(self._path(session.session_id), session)

    def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(
            p.stem for p in self.directory.glob("*.json") if SESSION_ID_RE.match(p.stem)
        )

    def _write_atomic(self, path: Path, session: Session) -> None:
        payload = session.model_dump_json(by_alias=True, indent=2)
        tmp_name: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{path.stem}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Session file unwritable: {path.name}", detail=str(e)) from e


class InMemorySessionStore(SessionStore):
    """测试与嵌入场景用的内存实现。保存序列化后的 JSON，保证读出的是独立副本。"""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def create(self, session: Session) -> Session:
        validate_session_id(session.session_id)
        if session.session_id in self._records:
            raise SessionExistsError(f"Session already exists: {session.session_id}")
        self._records[session.session_id] = session.model_dump_json(by_alias=True)
        return session

    def read(self, session_id: str) -> Session:
        validate_session_id(session_id)
        raw = self._records.get(session_id)
        if raw is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return Session.model_validate_json(raw)

    def _replace(self, session: Session) -> None:
        self._records[session.session_id] = session.model_dump_json(by_alias=True)

    def list_ids(self) -> list[str]:
        return sorted(self._records)
