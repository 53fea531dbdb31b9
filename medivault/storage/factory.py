"""
工厂函数：根据 settings.ARTIFACT_STORE_BACKEND 返回对应的 ArtifactStore 实例。

新增存储后端只需：
  1. 在 services.py 新建 XxxArtifactStore(BaseArtifactStore) 类
  2. 在此处 _build_registry() 加一行
  换后端只需改环境变量，业务代码零改动。
"""

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .base import BaseArtifactStore


def _minio_store():
    from .services import MinioArtifactStore

    return MinioArtifactStore(
        container=settings.ARTIFACT_CONTAINER,
        public=settings.ARTIFACT_CONTAINER_PUBLIC,
        max_bytes=settings.ARTIFACT_MAX_BYTES,
        endpoint=settings.MINIO_ENDPOINT,
        access_key=settings.MINIO_ACCESS_KEY,
        secret_key=settings.MINIO_SECRET_KEY,
        secure=settings.MINIO_USE_SSL,
        public_base_url=settings.MINIO_PUBLIC_URL,
    )


def _local_store():
    from .services import LocalArtifactStore

    return LocalArtifactStore(
        container=settings.ARTIFACT_CONTAINER,
        public=settings.ARTIFACT_CONTAINER_PUBLIC,
        max_bytes=settings.ARTIFACT_MAX_BYTES,
        root=settings.ARTIFACT_LOCAL_ROOT,
        base_url=settings.ARTIFACT_LOCAL_BASE_URL,
    )


def _build_registry():
    return {
        "minio": _minio_store,
        "local": _local_store,
    }


def get_artifact_store(backend: str | None = None) -> BaseArtifactStore:
    """
    返回已实例化的 ArtifactStore。

    Raises:
        ImproperlyConfigured: ARTIFACT_STORE_BACKEND 未知
    """
    backend = backend or getattr(settings, "ARTIFACT_STORE_BACKEND", "minio")
    registry = _build_registry()
    builder = registry.get(backend)

    if builder is None:
        raise ImproperlyConfigured(
            f"Unknown ARTIFACT_STORE_BACKEND: {backend!r}. "
            f"Known backends: {list(registry.keys())}"
        )

    return builder()
