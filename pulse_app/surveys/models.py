from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q


def department_key(company_id, department_name: str) -> str:
    """Tenant-scoped department key used by department-restricted blocks.

    Two companies may both have a "Sales" department, so the key always
    carries the company id: ``"<company id>:<department name>"``.
    """
    return f"{company_id}:{department_name}"


class Company(models.Model):
    """
    A client company (tenant) that receives surveys from the operator.

    Companies registered before structured ids existed are still matched
    by name through ``Survey.special_company_names``.
    """

    name = models.CharField(max_length=255, unique=True)
    contact_person = models.CharField(max_length=255, blank=True)
    email = models.EmailField(blank=True)
    city = models.CharField(max_length=255, blank=True)
    country = models.CharField(max_length=100, default="Deutschland")
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "companies"

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class Department(models.Model):
    company = models.ForeignKey(
        Company, on_delete=models.CASCADE, related_name="departments"
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ["name"]
        unique_together = ("company", "name")

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.company.name} / {self.name}"

    @property
    def key(self) -> str:
        return department_key(self.company_id, self.name)


class UserProfile(models.Model):
    """Role and tenant of a platform user.

    Only used to build a Principal for incoming requests; credentials stay
    with Django's auth user.
    """

    class Role(models.TextChoices):
        MEDITEC_ADMIN = "meditec_admin", "Meditec admin"
        COMPANY_ADMIN = "company_admin", "Company admin"
        EMPLOYEE = "employee", "Employee"

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="pulse_profile",
    )
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.EMPLOYEE)
    company = models.ForeignKey(
        Company,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="members",
    )
    department = models.ForeignKey(
        Department,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="members",
    )

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.user} ({self.role})"


class QuestionType(models.TextChoices):
    YES_NO = "yes_no", "Yes/No"
    TEXT = "text", "Free text"
    MULTIPLE_CHOICE = "multiple_choice", "Multiple choice"
    AGREE_DISAGREE = "agree_disagree", "Agree/Disagree"
    RATING = "rating", "Rating"


class QuestionCategory(models.Model):
    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "question categories"

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class CatalogQuestion(models.Model):
    """Reusable question maintained by the operator in the question catalog."""

    text = models.TextField()
    type = models.CharField(
        max_length=30, choices=QuestionType.choices, default=QuestionType.YES_NO
    )
    required = models.BooleanField(default=True)
    category = models.ForeignKey(
        QuestionCategory, on_delete=models.PROTECT, related_name="questions"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["category__name", "id"]

    def __str__(self) -> str:  # pragma: no cover
        return self.text[:80]


class Survey(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        SCHEDULED = "scheduled", "Released to companies"
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        ARCHIVED = "archived", "Archived"
        # Legacy values still present in stored data; never written
        PENDING = "pending", "Pending (legacy)"
        IN_PROGRESS = "in_progress", "In progress (legacy)"

    LEGACY_STATUS_ALIASES = {
        Status.PENDING: Status.SCHEDULED,
        Status.IN_PROGRESS: Status.ACTIVE,
    }

    # Stable identifier handed out to clients; the integer pk is the row key
    survey_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT
    )
    is_anonymous = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_pulse_surveys",
    )
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)

    # Tenant assignment: structured ids OR legacy display names, never merged
    assigned_companies = models.ManyToManyField(
        Company, blank=True, related_name="assigned_surveys"
    )
    special_company_names = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    activated_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(null=True, blank=True)
    last_status_change_at = models.DateTimeField(null=True, blank=True)
    last_status_change_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:  # pragma: no cover
        return self.title

    @property
    def canonical_status(self) -> str:
        """Status with legacy aliases mapped onto the current state names."""
        return self.LEGACY_STATUS_ALIASES.get(self.status, self.status)

    @property
    def is_draft(self) -> bool:
        return self.canonical_status == self.Status.DRAFT

    @property
    def is_active(self) -> bool:
        return self.canonical_status == self.Status.ACTIVE


class SurveyBlock(models.Model):
    survey = models.ForeignKey(Survey, on_delete=models.CASCADE, related_name="blocks")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    order = models.PositiveIntegerField()
    restrict_to_departments = models.BooleanField(default=False)
    # Department keys ("<company id>:<department name>")
    departments = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["order", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["survey", "order"], name="unique_block_order_per_survey"
            )
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.survey.title} / {self.title}"


class SurveyQuestion(models.Model):
    block = models.ForeignKey(
        SurveyBlock, on_delete=models.CASCADE, related_name="questions"
    )
    text = models.TextField()
    type = models.CharField(
        max_length=30, choices=QuestionType.choices, default=QuestionType.YES_NO
    )
    required = models.BooleanField(default=True)
    order = models.PositiveIntegerField()
    # Provenance only; does not change behaviour
    catalog_ref = models.ForeignKey(
        CatalogQuestion,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="survey_questions",
    )

    class Meta:
        ordering = ["order", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["block", "order"], name="unique_question_order_per_block"
            )
        ]


class SurveyInvitation(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        EXPIRED = "expired", "Expired"

    survey = models.ForeignKey(
        Survey, on_delete=models.CASCADE, related_name="invitations"
    )
    company = models.ForeignKey(
        Company, on_delete=models.CASCADE, related_name="survey_invitations"
    )
    email = models.EmailField()
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=8, unique=True)
    department = models.ForeignKey(
        Department,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invitations",
    )
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )
    sent_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-sent_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["survey", "company", "email"],
                name="one_invitation_per_email_per_survey_company",
            )
        ]
        indexes = [
            models.Index(fields=["survey", "code"], name="invitation_survey_code_idx"),
            models.Index(
                fields=["survey", "company"], name="invitation_survey_company_idx"
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Invitation for {self.email} to {self.survey.title}"

    def save(self, *args, **kwargs):
        self.email = (self.email or "").strip().lower()
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    @property
    def is_completed(self) -> bool:
        return self.status == self.Status.COMPLETED


class SurveyResponse(models.Model):
    class RespondentType(models.TextChoices):
        INVITATION = "invitation", "Invitation"
        USER = "user", "Registered user"
        ANONYMOUS = "anonymous", "Anonymous"

    survey = models.ForeignKey(
        Survey, on_delete=models.CASCADE, related_name="responses"
    )
    company = models.ForeignKey(
        Company,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="survey_responses",
    )
    respondent_type = models.CharField(
        max_length=20, choices=RespondentType.choices
    )
    # One-to-one so an invitation code can only be consumed once
    invitation = models.OneToOneField(
        SurveyInvitation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="response",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="pulse_responses",
    )
    respondent_name = models.CharField(max_length=255, blank=True)
    respondent_email = models.EmailField(blank=True)
    respondent_department = models.CharField(max_length=300, blank=True)
    answers = models.JSONField(default=dict)
    completed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["survey", "user"],
                condition=Q(user__isnull=False),
                name="one_pulse_response_per_user_per_survey",
            )
        ]
        indexes = [
            models.Index(
                fields=["survey", "company"], name="response_survey_company_idx"
            ),
        ]
