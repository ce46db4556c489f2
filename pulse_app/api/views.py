from __future__ import annotations

from typing import Any

from rest_framework import permissions, serializers, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes, throttle_classes
from rest_framework.response import Response
from rest_framework.settings import api_settings
from rest_framework.throttling import AnonRateThrottle

from pulse_app.surveys.directory import list_departments
from pulse_app.surveys.models import (
    CatalogQuestion,
    Department,
    QuestionType,
    Survey,
    SurveyBlock,
    SurveyInvitation,
    SurveyQuestion,
)
from pulse_app.surveys.permissions import (
    Principal,
    require_company_member,
    require_meditec_admin,
)
from pulse_app.surveys.services.catalog_service import CatalogService
from pulse_app.surveys.services.invitation_service import (
    InvitationService,
    InviteBatchResult,
)
from pulse_app.surveys.services.response_service import ResponseService
from pulse_app.surveys.services.survey_service import SurveyService
from pulse_app.surveys.visibility import respondent_department_key, visible_blocks


class SurveyQuestionSerializer(serializers.ModelSerializer):
    class Meta:
        model = SurveyQuestion
        fields = ["id", "text", "type", "required", "order", "catalog_ref"]


class SurveyBlockSerializer(serializers.ModelSerializer):
    questions = SurveyQuestionSerializer(many=True, read_only=True)

    class Meta:
        model = SurveyBlock
        fields = [
            "id",
            "title",
            "description",
            "order",
            "restrict_to_departments",
            "departments",
            "questions",
        ]


class SurveySerializer(serializers.ModelSerializer):
    # Legacy status values are reported under their current names
    status = serializers.CharField(source="canonical_status", read_only=True)
    blocks = serializers.SerializerMethodField()

    class Meta:
        model = Survey
        fields = [
            "id",
            "survey_id",
            "title",
            "description",
            "status",
            "is_anonymous",
            "start_date",
            "end_date",
            "assigned_companies",
            "special_company_names",
            "blocks",
            "created_at",
            "updated_at",
            "activated_at",
            "completed_at",
            "archived_at",
            "last_status_change_at",
        ]

    def get_blocks(self, obj: Survey) -> list[dict[str, Any]]:
        blocks = self.context.get("blocks")
        if blocks is None:
            blocks = obj.blocks.order_by("order", "id").prefetch_related("questions")
        return SurveyBlockSerializer(blocks, many=True).data


class SurveyListSerializer(serializers.ModelSerializer):
    status = serializers.CharField(source="canonical_status", read_only=True)

    class Meta:
        model = Survey
        fields = [
            "id",
            "survey_id",
            "title",
            "status",
            "is_anonymous",
            "start_date",
            "end_date",
            "created_at",
        ]


class QuestionInputSerializer(serializers.Serializer):
    text = serializers.CharField()
    type = serializers.ChoiceField(choices=QuestionType.choices, default=QuestionType.YES_NO)
    required = serializers.BooleanField(default=True)
    catalog_ref = serializers.IntegerField(required=False, allow_null=True)


class BlockInputSerializer(serializers.Serializer):
    title = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True, default="")
    restrict_to_departments = serializers.BooleanField(default=False)
    departments = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )
    questions = QuestionInputSerializer(many=True, required=False, default=list)


class SurveyWriteSerializer(serializers.Serializer):
    title = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True)
    is_anonymous = serializers.BooleanField(required=False)
    start_date = serializers.DateTimeField(required=False, allow_null=True)
    end_date = serializers.DateTimeField(required=False, allow_null=True)
    assigned_companies = serializers.ListField(
        child=serializers.IntegerField(), required=False
    )
    special_company_names = serializers.ListField(
        child=serializers.CharField(), required=False
    )
    blocks = BlockInputSerializer(many=True, required=False)


class StatusSerializer(serializers.Serializer):
    status = serializers.CharField()


class InvitationSerializer(serializers.ModelSerializer):
    company_name = serializers.CharField(source="company.name", read_only=True)
    department_name = serializers.CharField(
        source="department.name", read_only=True, default=None
    )

    class Meta:
        model = SurveyInvitation
        fields = [
            "id",
            "survey",
            "company",
            "company_name",
            "email",
            "name",
            "code",
            "department",
            "department_name",
            "status",
            "sent_at",
            "completed_at",
        ]


class InviteSerializer(serializers.Serializer):
    # Participants are validated one by one by the service so one bad entry
    # does not reject the batch
    participants = serializers.ListField(
        child=serializers.DictField(), allow_empty=False
    )
    message = serializers.CharField(required=False, allow_blank=True, default="")
    company_id = serializers.IntegerField(required=False, allow_null=True)


class MessageSerializer(serializers.Serializer):
    message = serializers.CharField(required=False, allow_blank=True, default="")


class CatalogQuestionSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True)

    class Meta:
        model = CatalogQuestion
        fields = ["id", "text", "type", "required", "category", "category_name"]


class CatalogAddSerializer(serializers.Serializer):
    block = serializers.IntegerField()
    catalog_questions = serializers.ListField(
        child=serializers.IntegerField(), allow_empty=False
    )


class DepartmentSerializer(serializers.ModelSerializer):
    key = serializers.CharField(read_only=True)

    class Meta:
        model = Department
        fields = ["id", "name", "description", "key"]


class ResponseSubmitSerializer(serializers.Serializer):
    survey = serializers.CharField()
    code = serializers.CharField(required=False, allow_blank=True)
    answers = serializers.DictField()


def batch_result_data(result: InviteBatchResult) -> dict[str, Any]:
    return {
        "created": InvitationSerializer(result.created, many=True).data,
        "updated": InvitationSerializer(result.updated, many=True).data,
        "failures": [
            {
                "index": failure.index,
                "name": failure.name,
                "email": failure.email,
                "errors": failure.errors,
            }
            for failure in result.failures
        ],
        "email_failures": [invitation.pk for invitation in result.email_failures],
    }


class SurveyViewSet(viewsets.ViewSet):
    """Surveys, their status and their invitations.

    Survey ids may be the row key or the stable ``survey_id`` UUID.
    """

    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = "[^/]+"

    def _principal(self, request) -> Principal:
        return Principal.from_user(request.user)

    def list(self, request):
        surveys = SurveyService.list_surveys(self._principal(request))
        return Response(SurveyListSerializer(surveys, many=True).data)

    def create(self, request):
        serializer = SurveyWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        survey = SurveyService.create_survey(
            self._principal(request), serializer.validated_data
        )
        return Response(SurveySerializer(survey).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        survey = SurveyService.get_survey(self._principal(request), pk)
        return Response(SurveySerializer(survey).data)

    def partial_update(self, request, pk=None):
        serializer = SurveyWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        survey = SurveyService.update_survey(
            self._principal(request), pk, serializer.validated_data
        )
        return Response(SurveySerializer(survey).data)

    def destroy(self, request, pk=None):
        SurveyService.delete_survey(self._principal(request), pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["patch"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = StatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        survey = SurveyService.update_status(
            self._principal(request), pk, serializer.validated_data["status"]
        )
        return Response(SurveySerializer(survey).data)

    @action(detail=True, methods=["get", "post"])
    def invitations(self, request, pk=None):
        principal = self._principal(request)
        survey = SurveyService.get_survey(principal, pk)

        if request.method == "GET":
            invitations = InvitationService.list_invitations(principal, survey)
            return Response(InvitationSerializer(invitations, many=True).data)

        serializer = InviteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = InvitationService.invite(
            principal,
            survey,
            data["participants"],
            message=data["message"],
            company_id=data.get("company_id"),
        )
        return Response(batch_result_data(result), status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="catalog-questions")
    def add_catalog_questions(self, request, pk=None):
        principal = self._principal(request)
        survey = SurveyService.get_survey(principal, pk)
        serializer = CatalogAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        questions = CatalogService.add_to_survey(
            principal,
            survey,
            serializer.validated_data["block"],
            serializer.validated_data["catalog_questions"],
        )
        return Response(
            SurveyQuestionSerializer(questions, many=True).data,
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get"], url_path="visible-blocks")
    def blocks_for_department(self, request, pk=None):
        survey = SurveyService.get_survey(self._principal(request), pk)
        department_key = request.query_params.get("department") or None
        blocks = visible_blocks(survey, department_key)
        return Response(SurveyBlockSerializer(blocks, many=True).data)


class InvitationViewSet(viewsets.ViewSet):
    permission_classes = [permissions.IsAuthenticated]

    def destroy(self, request, pk=None):
        InvitationService.revoke(Principal.from_user(request.user), pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def resend(self, request, pk=None):
        serializer = MessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invitation = InvitationService.resend(
            Principal.from_user(request.user),
            pk,
            message=serializer.validated_data["message"],
        )
        return Response(InvitationSerializer(invitation).data)


class QuestionCatalogViewSet(viewsets.ViewSet):
    """Active catalog questions, filterable by ``category`` and ``type``."""

    permission_classes = [permissions.IsAuthenticated]

    def list(self, request):
        require_meditec_admin(Principal.from_user(request.user))
        category = request.query_params.get("category")
        question_type = request.query_params.get("type")
        # Malformed filters are ignored rather than rejected
        questions = CatalogService.active_questions(
            category=int(category) if category and category.isdigit() else None,
            question_type=question_type if question_type in QuestionType.values else None,
        )
        return Response(CatalogQuestionSerializer(questions, many=True).data)


class DepartmentViewSet(viewsets.ViewSet):
    """Departments of the signed-in user's own company."""

    permission_classes = [permissions.IsAuthenticated]

    def list(self, request):
        company = require_company_member(Principal.from_user(request.user))
        return Response(DepartmentSerializer(list_departments(company), many=True).data)


class InvitationVerifyThrottle(AnonRateThrottle):
    scope = "invitation_verify"


class ParticipationViewSet(viewsets.ViewSet):
    """Endpoints used by invited participants; the code is the credential."""

    permission_classes = [permissions.AllowAny]

    def get_throttles(self):
        # Only throttle code checks where throttling is switched on at all
        if self.action == "verify" and api_settings.DEFAULT_THROTTLE_CLASSES:
            return [InvitationVerifyThrottle()]
        return super().get_throttles()

    @action(detail=False, methods=["get"])
    def verify(self, request):
        verified = InvitationService.verify(
            request.query_params.get("survey"),
            request.query_params.get("code"),
            email=request.query_params.get("email"),
        )
        invitation, survey = verified.invitation, verified.survey
        department_key = respondent_department_key(survey, invitation.department)
        blocks = visible_blocks(survey, department_key)
        survey_data = SurveySerializer(survey, context={"blocks": blocks}).data
        # Tenant assignment is operator data, not for participants
        survey_data.pop("assigned_companies", None)
        survey_data.pop("special_company_names", None)
        return Response(
            {
                "invitation": {
                    "id": invitation.pk,
                    "name": invitation.name,
                    "email": invitation.email,
                    "status": invitation.status,
                    "company": invitation.company.name,
                },
                "survey": survey_data,
            }
        )

    @action(detail=False, methods=["post"])
    def responses(self, request):
        serializer = ResponseSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data.get("code"):
            verified = InvitationService.verify(data["survey"], data["code"])
            response = ResponseService.submit_response(
                verified.survey,
                data["answers"],
                invitation_id=verified.invitation.pk,
            )
        else:
            survey = SurveyService.resolve_survey(data["survey"])
            response = ResponseService.submit_response(
                survey,
                data["answers"],
                principal=Principal.from_user(request.user),
            )
        return Response(
            {"id": response.pk, "completed_at": response.completed_at},
            status=status.HTTP_201_CREATED,
        )


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
@throttle_classes([])
def healthcheck(request):
    return Response({"status": "ok"})
