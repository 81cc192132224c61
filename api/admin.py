from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _
from rest_framework.exceptions import APIException

from .models import (
    Article,
    Author,
    AuthorApprovalLog,
    AuthorArticle,
    AuthorBook,
    AuthorRequest,
    Book,
    File,
    Institution,
    Journal,
    RequestedArticle,
    RequestedBook,
    RequestedInstitution,
    RequestedJournal,
    User,
)
from .review import approve_author_request


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    ordering = ("email",)
    list_display = ("email", "username", "first_name", "last_name",
                    "role", "is_staff", "is_active")
    list_filter = ("role", "is_staff", "is_superuser", "is_active")
    search_fields = ("email", "username", "first_name", "last_name")
    fieldsets = (
        (None, {"fields": ("email", "password")}),
        (_("Personal info"), {"fields": ("username", "first_name", "last_name")}),
        (
            _("Permissions"),
            {"fields": ("role", "is_active", "is_staff", "is_superuser",
                        "groups", "user_permissions")},
        ),
        (_("Important dates"), {"fields": ("last_login", "date_joined")}),
    )
    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "password1", "password2", "role", "is_staff", "is_superuser"),
            },
        ),
    )
    filter_horizontal = ("groups", "user_permissions")


@admin.register(Institution)
class InstitutionAdmin(admin.ModelAdmin):
    list_display = ("name", "type", "country", "city", "updated_at")
    list_filter = ("type", "country")
    search_fields = ("name", "country", "city")


class AuthorArticleInline(admin.TabularInline):
    model = AuthorArticle
    extra = 0
    autocomplete_fields = ("article",)


class AuthorBookInline(admin.TabularInline):
    model = AuthorBook
    extra = 0
    autocomplete_fields = ("book",)


@admin.register(Author)
class AuthorAdmin(admin.ModelAdmin):
    list_display = ("__str__", "email", "institution", "user", "created_at")
    search_fields = ("first_name", "last_name", "email", "user__email")
    list_select_related = ("institution", "user")
    readonly_fields = ("created_at", "updated_at")
    inlines = (AuthorArticleInline, AuthorBookInline)


@admin.register(Article)
class ArticleAdmin(admin.ModelAdmin):
    list_display = ("title", "language", "publish_date", "institution")
    list_filter = ("language",)
    search_fields = ("title", "abstract", "subject_classification")
    readonly_fields = ("created_at", "updated_at")


@admin.register(Journal)
class JournalAdmin(admin.ModelAdmin):
    list_display = ("name", "type", "issn", "language", "publish_date")
    list_filter = ("type", "language")
    search_fields = ("name", "issn")
    readonly_fields = ("created_at", "updated_at")


@admin.register(Book)
class BookAdmin(admin.ModelAdmin):
    list_display = ("title", "isbn", "publisher", "publish_date")
    list_filter = ("language",)
    search_fields = ("title", "isbn", "publisher")
    readonly_fields = ("created_at", "updated_at")


@admin.register(File)
class FileAdmin(admin.ModelAdmin):
    list_display = ("file_name", "content_type", "content_id",
                    "uploaded_by", "version", "is_public")
    list_filter = ("content_type", "is_public")
    search_fields = ("file_name", "uploaded_by__email")
    readonly_fields = ("created_at", "updated_at")


class RequestedInstitutionInline(admin.TabularInline):
    model = RequestedInstitution
    extra = 0
    readonly_fields = ("institution",)


class RequestedArticleInline(admin.TabularInline):
    model = RequestedArticle
    extra = 0
    fields = ("title", "publish_date", "language",
              "subject_classification", "article")
    readonly_fields = ("article",)


class RequestedJournalInline(admin.TabularInline):
    model = RequestedJournal
    extra = 0
    readonly_fields = ("journal",)


class RequestedBookInline(admin.TabularInline):
    model = RequestedBook
    extra = 0
    fields = ("title", "isbn", "publisher", "publish_date", "book")
    readonly_fields = ("book",)


class AuthorApprovalLogInline(admin.TabularInline):
    model = AuthorApprovalLog
    extra = 0
    can_delete = False
    fields = (
        "started_at",
        "finished_at",
        "reviewer",
        "mode",
        "status",
        "last_step",
        "error_message",
    )
    readonly_fields = fields
    ordering = ("-started_at",)
    verbose_name_plural = "Approval attempts"

    def has_add_permission(self, request, obj=None):  # noqa: D401
        """Inline is read-only."""
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(AuthorRequest)
class AuthorRequestAdmin(admin.ModelAdmin):
    list_display = ("first_name", "last_name", "user",
                    "status", "reviewed_by", "created_at")
    list_filter = ("status", "created_at")
    search_fields = ("first_name", "last_name", "email",
                     "user__email", "reason_for_request")
    list_select_related = ("user", "reviewed_by")
    readonly_fields = ("user", "status", "reviewed_by",
                       "author", "created_at", "updated_at")
    inlines = (
        RequestedInstitutionInline,
        RequestedArticleInline,
        RequestedJournalInline,
        RequestedBookInline,
        AuthorApprovalLogInline,
    )
    actions = ("approve_selected",)

    @admin.action(description="Approve selected pending requests")
    def approve_selected(self, request, queryset):
        approved = 0
        for author_request in queryset.filter(status=AuthorRequest.Status.PENDING):
            try:
                approve_author_request(author_request.pk, request.user)
            except APIException as exc:
                self.message_user(
                    request,
                    f"{author_request}: {exc.detail}",
                    level=messages.ERROR,
                )
            else:
                approved += 1
        if approved:
            self.message_user(
                request, f"Approved {approved} author request(s).", level=messages.SUCCESS)


@admin.register(AuthorApprovalLog)
class AuthorApprovalLogAdmin(admin.ModelAdmin):
    list_display = (
        "author_request",
        "reviewer",
        "mode",
        "status",
        "last_step",
        "started_at",
        "finished_at",
    )
    list_filter = ("status", "mode", "last_step")
    search_fields = ("author_request__first_name",
                     "author_request__last_name", "error_message")
    readonly_fields = (
        "author_request",
        "reviewer",
        "mode",
        "status",
        "last_step",
        "error_message",
        "started_at",
        "finished_at",
    )
    ordering = ("-started_at", "-id")

    def has_add_permission(self, request):
        return False
