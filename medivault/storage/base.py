"""
BaseArtifactStore — 所有对象存储实现的抽象基类。

每个新后端只需：
1. 继承 BaseArtifactStore
2. 实现 _list_containers / _create_container / _put / public_url / signed_url / delete
3. 在 factory.py 的 _build_registry() 注册一行

services.py 完全不知道文件最终落在 MinIO 还是本地磁盘。
"""

import logging
import os
import re
import secrets
import time
from abc import ABC, abstractmethod

from ..exceptions import ValidationError
from .types import ArtifactRef

logger = logging.getLogger(__name__)

_EXT_RE = re.compile(r"[^a-z0-9]")


def generate_key(filename: str) -> str:
    """
    生成不重复的对象 key：{epochMillis}-{randomToken}.{ext}

    扩展名取自原文件名（小写、只保留字母数字），没有扩展名时用 bin。
    """
    ext = _EXT_RE.sub("", os.path.splitext(filename or "")[1].lower()) or "bin"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}.{ext}"


class BaseArtifactStore(ABC):
    """
    ensure_container → upload → resolve_access_url

    子类负责和具体 SDK 打交道，并把 SDK 异常翻译成
    StorageAccessError（权限问题）或 TransientIOError（其他故障）。
    """

    def __init__(self, container: str, public: bool = True, max_bytes: int | None = None):
        self.container = container
        self.public = public
        self.max_bytes = max_bytes

    # ── 必须实现 ───────────────────────────────────────────────────────────

    @abstractmethod
    def _list_containers(self) -> list[str]:
        """列出已存在的容器名。"""

    @abstractmethod
    def _create_container(self) -> None:
        """
        创建 self.container。

        已存在（并发创建）时静默返回；权限不足抛 StorageAccessError。
        """

    @abstractmethod
    def _put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    def public_url(self, ref: ArtifactRef) -> str:
        ...

    @abstractmethod
    def signed_url(self, ref: ArtifactRef, ttl_seconds: int) -> str:
        ...

    @abstractmethod
    def delete(self, ref: ArtifactRef) -> None:
        """删除对象（孤儿文件回收用）。对象不存在时不报错。"""

    # ── 对外统一入口 ───────────────────────────────────────────────────────

    def ensure_container(self) -> None:
        """幂等：不存在才创建，"已存在" 视为成功。"""
        if self.container in self._list_containers():
            logger.debug("[storage] container %r already exists", self.container)
            return
        logger.info("[storage] creating container %r (public=%s)", self.container, self.public)
        self._create_container()

    def check_size(self, size: int) -> None:
        if self.max_bytes is not None and size > self.max_bytes:
            raise ValidationError(
                message=f"File is too large ({size} bytes, limit {self.max_bytes}).",
                code="FILE_TOO_LARGE",
                detail={"size": size, "limit": self.max_bytes},
            )

    def upload(self, filename: str, data: bytes, content_type: str = "application/octet-stream") -> ArtifactRef:
        self.check_size(len(data))

        key = generate_key(filename)
        self._put(key, data, content_type or "application/octet-stream")
        logger.info("[storage] uploaded %s/%s (%d bytes)", self.container, key, len(data))
        return ArtifactRef(key=key, container=self.container)

    def ref_for(self, key: str) -> ArtifactRef:
        return ArtifactRef(key=key, container=self.container)

    def resolve_access_url(self, ref: ArtifactRef, ttl_seconds: int) -> str:
        """
        公开容器返回永久 URL，否则返回 ttl_seconds 内有效的签名 URL。

        两种 URL 对调用方都是"当前有效引用"，不应缓存超过容器的访问策略。
        """
        if self.public:
            return self.public_url(ref)
        return self.signed_url(ref, ttl_seconds)
