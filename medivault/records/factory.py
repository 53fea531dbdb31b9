"""
工厂函数：根据 settings.IDENTITY_SCHEMA 返回对应的 IdentityStore。

新增表结构只需：
  1. 在 adapters.py 新建 XxxIdentityStore(BaseIdentityStore) 类
  2. 在此处 _build_registry() 加一行
  不需要修改 services.py 或任何业务代码。
"""

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from .base import BaseIdentityStore, BaseReportStore


def _build_registry() -> dict[str, type[BaseIdentityStore]]:
    # 延迟导入，避免在 app registry ready 之前 import models
    from .adapters import ProfilesIdentityStore, SplitIdentityStore

    return {
        "profiles": ProfilesIdentityStore,
        "split":    SplitIdentityStore,
    }


def get_identity_store(schema: str | None = None) -> BaseIdentityStore:
    """
    返回已实例化的 IdentityStore。

    schema 缺省时读 settings.IDENTITY_SCHEMA（环境变量 IDENTITY_SCHEMA，默认 "profiles"）。

    Raises:
        ImproperlyConfigured: 未知的 schema
    """
    schema = schema or getattr(settings, "IDENTITY_SCHEMA", "profiles")
    registry = _build_registry()
    store_cls = registry.get(schema)

    if store_cls is None:
        raise ImproperlyConfigured(
            f"Unknown IDENTITY_SCHEMA: {schema!r}. "
            f"Known schemas: {list(registry.keys())}"
        )

    return store_cls()


def get_report_store() -> BaseReportStore:
    from .adapters import DjangoReportStore

    return DjangoReportStore()
