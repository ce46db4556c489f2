from django.contrib import admin

from .models import (
    CatalogQuestion,
    Company,
    Department,
    QuestionCategory,
    Survey,
    SurveyBlock,
    SurveyInvitation,
    SurveyQuestion,
    SurveyResponse,
    UserProfile,
)


class DepartmentInline(admin.TabularInline):
    model = Department
    extra = 0


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ("name", "city", "email", "active", "created_at")
    list_filter = ("active",)
    search_fields = ("name", "city", "email")
    inlines = [DepartmentInline]


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "company", "department")
    list_filter = ("role",)
    search_fields = ("user__username", "user__email", "company__name")
    raw_id_fields = ("user",)


class CatalogQuestionInline(admin.TabularInline):
    model = CatalogQuestion
    extra = 0


@admin.register(QuestionCategory)
class QuestionCategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "is_active", "updated_at")
    list_filter = ("is_active",)
    inlines = [CatalogQuestionInline]


@admin.register(CatalogQuestion)
class CatalogQuestionAdmin(admin.ModelAdmin):
    list_display = ("text", "type", "category", "required", "is_active")
    list_filter = ("type", "category", "is_active")
    search_fields = ("text",)


class SurveyBlockInline(admin.TabularInline):
    model = SurveyBlock
    extra = 0
    fields = ("order", "title", "restrict_to_departments", "departments")


@admin.register(Survey)
class SurveyAdmin(admin.ModelAdmin):
    list_display = ("title", "status", "is_anonymous", "start_date", "end_date", "created_at")
    list_filter = ("status", "is_anonymous")
    search_fields = ("title", "description")
    filter_horizontal = ("assigned_companies",)
    # Status changes go through the lifecycle rules, not the admin form
    readonly_fields = (
        "survey_id",
        "status",
        "created_at",
        "updated_at",
        "activated_at",
        "completed_at",
        "archived_at",
        "last_status_change_at",
        "last_status_change_by",
    )
    inlines = [SurveyBlockInline]


@admin.register(SurveyQuestion)
class SurveyQuestionAdmin(admin.ModelAdmin):
    list_display = ("text", "type", "block", "order", "required")
    list_filter = ("type",)
    raw_id_fields = ("block", "catalog_ref")


@admin.register(SurveyInvitation)
class SurveyInvitationAdmin(admin.ModelAdmin):
    list_display = ("email", "name", "survey", "company", "status", "sent_at")
    list_filter = ("status",)
    search_fields = ("email", "name", "code")
    readonly_fields = ("code", "sent_at", "completed_at", "created_at", "updated_at")


@admin.register(SurveyResponse)
class SurveyResponseAdmin(admin.ModelAdmin):
    list_display = ("survey", "company", "respondent_type", "completed_at")
    list_filter = ("respondent_type",)
    readonly_fields = ("answers", "completed_at")
