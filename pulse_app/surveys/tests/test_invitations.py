"""
Tests for issuing, verifying, resending and completing invitations.
"""

from django.core.exceptions import PermissionDenied, ValidationError
from django.utils import timezone
import pytest

from pulse_app.surveys import email_utils
from pulse_app.surveys.exceptions import (
    EmailDeliveryError,
    InvitationMismatch,
    InvitationNotFound,
    TenantNotFound,
)
from pulse_app.surveys.models import Department, Survey, SurveyInvitation
from pulse_app.surveys.permissions import Principal
from pulse_app.surveys.services.invitation_service import (
    CODE_ALPHABET,
    InvitationService,
)


@pytest.fixture
def acme(company_admin):
    return Principal.from_user(company_admin)


@pytest.fixture
def operator(meditec_admin):
    return Principal.from_user(meditec_admin)


@pytest.fixture
def failing_email(monkeypatch):
    monkeypatch.setattr(email_utils, "send_invitation_email", lambda *a, **kw: False)


@pytest.mark.django_db
class TestInvite:
    def test_batch_with_one_bad_email(self, scheduled_survey, acme, mailoutbox):
        result = InvitationService.invite(
            acme,
            scheduled_survey,
            [{"name": "A", "email": "bad-email"}, {"name": "B", "email": "b@x.com"}],
        )

        assert len(result.failures) == 1
        assert result.failures[0].index == 0
        assert result.failures[0].name == "A"
        assert len(result.created) == 1
        assert result.created[0].email == "b@x.com"
        assert result.updated == []
        assert len(mailoutbox) == 1

    def test_missing_name_is_a_failure(self, scheduled_survey, acme):
        result = InvitationService.invite(
            acme, scheduled_survey, [{"name": "  ", "email": "c@x.com"}]
        )
        assert len(result.failures) == 1
        assert SurveyInvitation.objects.count() == 0

    def test_code_format(self, scheduled_survey, acme):
        result = InvitationService.invite(
            acme, scheduled_survey, [{"name": "B", "email": "b@x.com"}]
        )
        code = result.created[0].code
        assert len(code) == 8
        assert all(ch in CODE_ALPHABET for ch in code)

    def test_reinvite_updates_in_place_and_keeps_code(
        self, scheduled_survey, acme, company
    ):
        first = InvitationService.invite(
            acme, scheduled_survey, [{"name": "Bea", "email": "b@x.com"}]
        ).created[0]
        SurveyInvitation.objects.filter(pk=first.pk).update(
            status=SurveyInvitation.Status.EXPIRED
        )

        second = InvitationService.invite(
            acme, scheduled_survey, [{"name": "Beatrice", "email": " B@X.com "}]
        )

        assert second.created == []
        assert len(second.updated) == 1
        assert SurveyInvitation.objects.filter(
            survey=scheduled_survey, company=company
        ).count() == 1
        refreshed = SurveyInvitation.objects.get(pk=first.pk)
        assert refreshed.code == first.code
        assert refreshed.name == "Beatrice"
        assert refreshed.status == SurveyInvitation.Status.PENDING
        assert refreshed.sent_at >= first.sent_at

    def test_department_of_company_is_stored(self, scheduled_survey, acme, sales):
        result = InvitationService.invite(
            acme,
            scheduled_survey,
            [{"name": "B", "email": "b@x.com", "department_id": sales.pk}],
        )
        assert result.created[0].department == sales

    def test_foreign_department_is_dropped(
        self, scheduled_survey, acme, other_company
    ):
        foreign = Department.objects.create(company=other_company, name="Sales")
        result = InvitationService.invite(
            acme,
            scheduled_survey,
            [{"name": "B", "email": "b@x.com", "department_id": foreign.pk}],
        )
        assert result.failures == []
        assert result.created[0].department is None

    def test_email_failure_keeps_record(self, scheduled_survey, acme, failing_email):
        result = InvitationService.invite(
            acme, scheduled_survey, [{"name": "B", "email": "b@x.com"}]
        )
        assert len(result.created) == 1
        assert result.email_failures == result.created
        assert SurveyInvitation.objects.filter(email="b@x.com").exists()

    def test_company_admin_is_pinned_to_own_company(
        self, scheduled_survey, acme, other_company
    ):
        with pytest.raises(PermissionDenied):
            InvitationService.invite(
                acme,
                scheduled_survey,
                [{"name": "B", "email": "b@x.com"}],
                company_id=other_company.pk,
            )

    def test_operator_must_name_company(self, scheduled_survey, operator):
        with pytest.raises(ValidationError):
            InvitationService.invite(
                operator, scheduled_survey, [{"name": "B", "email": "b@x.com"}]
            )

    def test_operator_invites_for_assigned_company(
        self, scheduled_survey, operator, company
    ):
        result = InvitationService.invite(
            operator,
            scheduled_survey,
            [{"name": "B", "email": "b@x.com"}],
            company_id=company.pk,
        )
        assert result.created[0].company == company

    def test_operator_cannot_invite_for_unassigned_company(
        self, scheduled_survey, operator, other_company
    ):
        with pytest.raises(ValidationError):
            InvitationService.invite(
                operator,
                scheduled_survey,
                [{"name": "B", "email": "b@x.com"}],
                company_id=other_company.pk,
            )

    def test_operator_with_unknown_company(self, scheduled_survey, operator):
        with pytest.raises(TenantNotFound):
            InvitationService.invite(
                operator,
                scheduled_survey,
                [{"name": "B", "email": "b@x.com"}],
                company_id=424242,
            )

    def test_unassigned_company_admin_denied(
        self, scheduled_survey, other_company_admin
    ):
        with pytest.raises(PermissionDenied):
            InvitationService.invite(
                Principal.from_user(other_company_admin),
                scheduled_survey,
                [{"name": "B", "email": "b@x.com"}],
            )

    @pytest.mark.parametrize(
        "status", [Survey.Status.DRAFT, Survey.Status.COMPLETED, Survey.Status.ARCHIVED]
    )
    def test_only_released_or_active_surveys(self, make_survey, company, acme, status):
        survey = make_survey(status=status, companies=[company])
        with pytest.raises(ValidationError):
            InvitationService.invite(acme, survey, [{"name": "B", "email": "b@x.com"}])

    def test_same_email_for_two_companies_is_two_invitations(
        self, make_survey, company, other_company, acme, other_company_admin
    ):
        survey = make_survey(
            status=Survey.Status.SCHEDULED, companies=[company, other_company]
        )
        InvitationService.invite(acme, survey, [{"name": "B", "email": "b@x.com"}])
        InvitationService.invite(
            Principal.from_user(other_company_admin),
            survey,
            [{"name": "B", "email": "b@x.com"}],
        )
        codes = set(survey.invitations.values_list("code", flat=True))
        assert len(codes) == 2


def code_sequence(monkeypatch, codes):
    codes = iter(codes)
    monkeypatch.setattr(
        InvitationService, "generate_code", staticmethod(lambda: next(codes))
    )


@pytest.mark.django_db
class TestCodeCollisions:
    def test_taken_code_is_regenerated(self, scheduled_survey, company, acme, monkeypatch):
        SurveyInvitation.objects.create(
            survey=scheduled_survey,
            company=company,
            email="first@x.com",
            name="First",
            code="TAKEN001",
            sent_at=timezone.now(),
        )
        code_sequence(monkeypatch, ["TAKEN001", "FRESH002"])

        result = InvitationService.invite(
            acme, scheduled_survey, [{"name": "B", "email": "b@x.com"}]
        )

        assert result.created[0].code == "FRESH002"

    def test_exhausted_codes_fail_only_that_participant(
        self, scheduled_survey, acme, monkeypatch, settings, mailoutbox
    ):
        settings.PULSE_INVITATION_CODE_ATTEMPTS = 2
        code_sequence(monkeypatch, ["AAAA0001", "AAAA0001", "AAAA0001", "CCCC0003"])

        result = InvitationService.invite(
            acme,
            scheduled_survey,
            [
                {"name": "A", "email": "a@x.com"},
                {"name": "B", "email": "b@x.com"},
                {"name": "C", "email": "c@x.com"},
            ],
        )

        assert [i.email for i in result.created] == ["a@x.com", "c@x.com"]
        assert [(f.index, f.email) for f in result.failures] == [(1, "b@x.com")]
        assert not SurveyInvitation.objects.filter(email="b@x.com").exists()
        assert len(mailoutbox) == 2

    def test_concurrent_create_collapses_into_update(
        self, scheduled_survey, company, acme, monkeypatch
    ):
        # Another request stores the same person after our lookup found nothing
        def competing_create():
            if not SurveyInvitation.objects.filter(code="RACE0001").exists():
                SurveyInvitation.objects.create(
                    survey=scheduled_survey,
                    company=company,
                    email="b@x.com",
                    name="Other request",
                    code="RACE0001",
                    sent_at=timezone.now(),
                )
            return "MINE0002"

        monkeypatch.setattr(
            InvitationService, "generate_unique_code", staticmethod(competing_create)
        )

        result = InvitationService.invite(
            acme, scheduled_survey, [{"name": "B", "email": "b@x.com"}]
        )

        assert result.created == []
        assert len(result.updated) == 1
        stored = SurveyInvitation.objects.get(survey=scheduled_survey, email="b@x.com")
        assert stored.code == "RACE0001"
        assert stored.name == "B"


@pytest.mark.django_db
class TestParticipantLimits:
    def test_overlong_values_are_row_failures(self, scheduled_survey, acme):
        long_domain = ".".join(["d" * 50] * 5) + ".com"
        result = InvitationService.invite(
            acme,
            scheduled_survey,
            [
                {"name": "N" * 256, "email": "n@x.com"},
                {"name": "Long", "email": f"l@{long_domain}"},
                {"name": "Ok", "email": "ok@x.com"},
            ],
        )

        assert [f.index for f in result.failures] == [0, 1]
        assert [i.email for i in result.created] == ["ok@x.com"]


@pytest.fixture
def invitation(active_survey, acme):
    return InvitationService.invite(
        acme, active_survey, [{"name": "Bea", "email": "bea@acme.example"}]
    ).created[0]


@pytest.mark.django_db
class TestVerify:
    def test_valid_code_in_any_case(self, active_survey, invitation):
        verified = InvitationService.verify(
            str(active_survey.survey_id), f" {invitation.code.lower()} "
        )
        assert verified.invitation == invitation
        assert verified.survey == active_survey

    def test_row_key_is_accepted(self, active_survey, invitation):
        verified = InvitationService.verify(active_survey.pk, invitation.code)
        assert verified.invitation == invitation

    def test_code_from_another_survey_is_not_found(
        self, make_survey, company, invitation
    ):
        other = make_survey(status=Survey.Status.ACTIVE, companies=[company])
        with pytest.raises(InvitationNotFound):
            InvitationService.verify(other.pk, invitation.code)

    def test_unknown_code(self, active_survey, invitation):
        with pytest.raises(InvitationNotFound):
            InvitationService.verify(active_survey.pk, "ABCD1234")

    def test_email_mismatch(self, active_survey, invitation):
        with pytest.raises(InvitationMismatch):
            InvitationService.verify(
                active_survey.pk, invitation.code, email="someone@else.example"
            )

    def test_matching_email_in_any_case(self, active_survey, invitation):
        verified = InvitationService.verify(
            active_survey.pk, invitation.code, email="BEA@acme.example"
        )
        assert verified.invitation == invitation

    def test_survey_must_be_open(self, active_survey, invitation):
        Survey.objects.filter(pk=active_survey.pk).update(status=Survey.Status.DRAFT)
        with pytest.raises(ValidationError):
            InvitationService.verify(active_survey.pk, invitation.code)


@pytest.mark.django_db
class TestCompleteAndResend:
    def test_mark_completed_is_idempotent(self, invitation):
        first = InvitationService.mark_completed(invitation.pk)
        second = InvitationService.mark_completed(invitation.pk)

        assert first.status == SurveyInvitation.Status.COMPLETED
        assert second.status == SurveyInvitation.Status.COMPLETED
        assert second.completed_at == first.completed_at

    def test_mark_completed_unknown(self, db):
        with pytest.raises(InvitationNotFound):
            InvitationService.mark_completed(987654)

    def test_resend_keeps_code(self, invitation, acme, mailoutbox):
        mailoutbox.clear()
        resent = InvitationService.resend(acme, invitation.pk)
        assert resent.code == invitation.code
        assert resent.sent_at >= invitation.sent_at
        assert len(mailoutbox) == 1
        assert invitation.code in mailoutbox[0].body

    def test_resend_revives_expired(self, invitation, acme):
        SurveyInvitation.objects.filter(pk=invitation.pk).update(
            status=SurveyInvitation.Status.EXPIRED
        )
        resent = InvitationService.resend(acme, invitation.pk)
        assert resent.status == SurveyInvitation.Status.PENDING

    def test_resend_completed_rejected(self, invitation, acme):
        InvitationService.mark_completed(invitation.pk)
        with pytest.raises(ValidationError):
            InvitationService.resend(acme, invitation.pk)

    def test_resend_failure_is_reported_after_write(
        self, invitation, acme, failing_email
    ):
        with pytest.raises(EmailDeliveryError):
            InvitationService.resend(acme, invitation.pk)
        assert SurveyInvitation.objects.filter(pk=invitation.pk).exists()

    def test_other_company_cannot_resend(self, invitation, other_company_admin):
        with pytest.raises(PermissionDenied):
            InvitationService.resend(Principal.from_user(other_company_admin), invitation.pk)


@pytest.mark.django_db
class TestListAndRevoke:
    def test_company_admin_sees_only_own_invitations(
        self, make_survey, company, other_company, acme, operator
    ):
        survey = make_survey(
            status=Survey.Status.SCHEDULED, companies=[company, other_company]
        )
        InvitationService.invite(acme, survey, [{"name": "A", "email": "a@x.com"}])
        InvitationService.invite(
            operator,
            survey,
            [{"name": "G", "email": "g@x.com"}],
            company_id=other_company.pk,
        )

        assert [i.email for i in InvitationService.list_invitations(acme, survey)] == [
            "a@x.com"
        ]
        assert len(InvitationService.list_invitations(operator, survey)) == 2

    def test_newest_first(self, scheduled_survey, acme):
        InvitationService.invite(acme, scheduled_survey, [{"name": "A", "email": "a@x.com"}])
        InvitationService.invite(acme, scheduled_survey, [{"name": "B", "email": "b@x.com"}])
        emails = [i.email for i in InvitationService.list_invitations(acme, scheduled_survey)]
        assert emails == ["b@x.com", "a@x.com"]

    def test_revoke(self, invitation, acme):
        InvitationService.revoke(acme, invitation.pk)
        assert not SurveyInvitation.objects.filter(pk=invitation.pk).exists()

    def test_revoke_by_other_company_denied(self, invitation, other_company_admin):
        with pytest.raises(PermissionDenied):
            InvitationService.revoke(Principal.from_user(other_company_admin), invitation.pk)
        assert SurveyInvitation.objects.filter(pk=invitation.pk).exists()

    def test_revoke_unknown(self, acme):
        with pytest.raises(InvitationNotFound):
            InvitationService.revoke(acme, 123456)
