import json
from urllib.parse import parse_qs

from channels.generic.websocket import AsyncWebsocketConsumer

from .notify import group_name, lab_scope, patient_scope


class ReportUpdatesConsumer(AsyncWebsocketConsumer):
    """
    ws/reports/patient/<uuid>/  或  ws/reports/lab/?label=<lab name>

    收到 reports.refresh 后客户端应重新拉取列表。
    """

    async def connect(self):
        kwargs = self.scope["url_route"]["kwargs"]
        if "patient_id" in kwargs:
            scope = patient_scope(kwargs["patient_id"])
        else:
            query = parse_qs(self.scope.get("query_string", b"").decode("utf-8"))
            label = (query.get("label") or [""])[0].strip()
            if not label:
                await self.close(code=4400)
                return
            scope = lab_scope(label)

        self.group = group_name(scope)
        await self.channel_layer.group_add(self.group, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        group = getattr(self, "group", None)
        if group:
            await self.channel_layer.group_discard(group, self.channel_name)

    async def reports_refresh(self, event):
        # event: {"type": "reports.refresh", "scope": "patient"|"lab", "report_id": "...", "created_at": "..."}
        await self.send(json.dumps(event))
