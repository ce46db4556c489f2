from django.apps import AppConfig


class SurveysConfig(AppConfig):
    name = "pulse_app.surveys"
    label = "surveys"
    verbose_name = "Pulse surveys"
