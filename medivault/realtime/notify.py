"""
报告新增的 refresh 通知。

只通知"有新报告了"，不推送增量数据：订阅方收到后重新调用
list_by_patient / list_by_lab 拿全量列表。

两条通道：
  - Channels group（WebSocket 客户端）：reports.patient.<uuid> / reports.lab.<hash>
  - 进程内回调（subscribe），给非 WebSocket 的调用方用
"""

import hashlib
import logging
from collections import defaultdict
from typing import Callable

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from ..records.types import ReportRecord

logger = logging.getLogger(__name__)

EVENT_TYPE = "reports.refresh"


def patient_scope(patient_id) -> tuple[str, str]:
    return ("patient", str(patient_id))


def lab_scope(lab_label: str) -> tuple[str, str]:
    return ("lab", lab_label)


def group_name(scope: tuple[str, str]) -> str:
    """Channels group 名只允许 ASCII 字母数字 - _ .，lab 名是自由文本所以取哈希。"""
    kind, value = scope
    if kind == "lab":
        value = hashlib.sha1(value.encode("utf-8")).hexdigest()[:32]
    return f"reports.{kind}.{value}"


class ReportChangeNotifier:

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer
        self._subscribers: dict[tuple[str, str], list[Callable]] = defaultdict(list)

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def subscribe(self, scope: tuple[str, str], callback: Callable[[dict], None]) -> Callable[[], None]:
        """注册回调，返回取消订阅函数。"""
        self._subscribers[scope].append(callback)

        def unsubscribe():
            if callback in self._subscribers[scope]:
                self._subscribers[scope].remove(callback)

        return unsubscribe

    def publish(self, report: ReportRecord) -> None:
        for scope in (patient_scope(report.patient_id), lab_scope(report.lab)):
            event = {
                "type": EVENT_TYPE,
                "scope": scope[0],
                "report_id": str(report.id),
                "created_at": report.created_at.isoformat(),
            }
            self._send_group(scope, event)
            self._notify_local(scope, event)

    def _notify_local(self, scope, event) -> None:
        for callback in list(self._subscribers.get(scope, ())):
            try:
                callback(event)
            except Exception:
                # 报告已经提交，单个订阅方出错不能变成请求失败
                logger.exception("[notify] subscriber %r for %s failed", callback, group_name(scope))

    def _send_group(self, scope, event) -> None:
        layer = self.channel_layer
        if layer is None:
            return
        try:
            async_to_sync(layer.group_send)(group_name(scope), event)
        except Exception:
            # 通知是尽力而为：记录已经写入，客户端下次刷新也能看到
            logger.exception("[notify] group_send to %s failed", group_name(scope))


# 进程级默认实例：WebSocket 之外的订阅方共享同一个回调表
default_notifier = ReportChangeNotifier()
