from django.urls import path
from rest_framework.routers import DefaultRouter

from .views import (
    DepartmentViewSet,
    InvitationViewSet,
    ParticipationViewSet,
    QuestionCatalogViewSet,
    SurveyViewSet,
    healthcheck,
)

router = DefaultRouter()
router.register("surveys", SurveyViewSet, basename="survey")
router.register("invitations", InvitationViewSet, basename="invitation")
router.register("participation", ParticipationViewSet, basename="participation")
router.register("question-catalog", QuestionCatalogViewSet, basename="question-catalog")
router.register("departments", DepartmentViewSet, basename="department")

urlpatterns = [
    path("health", healthcheck, name="healthcheck"),
] + router.urls
