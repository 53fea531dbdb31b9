from django.urls import path

from .consumers import ReportUpdatesConsumer

websocket_urlpatterns = [
    path("ws/reports/patient/<uuid:patient_id>/", ReportUpdatesConsumer.as_asgi()),
    path("ws/reports/lab/", ReportUpdatesConsumer.as_asgi()),
]
