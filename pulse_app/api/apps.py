from django.apps import AppConfig


class ApiConfig(AppConfig):
    name = "pulse_app.api"
    label = "api"
