from django.urls import path

from care.realtime.consumers import ClinicConsumer

websocket_urlpatterns = [
    path("ws/clinic/", ClinicConsumer.as_asgi()),
]
