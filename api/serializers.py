from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .exceptions import ConflictError
from .models import (
    AuthorRequest,
    File,
    RequestedArticle,
    RequestedBook,
    RequestedInstitution,
    RequestedJournal,
)
from .utils import notify_admins_of_author_request

User = get_user_model()

WORK_ITEM_KINDS = ("articles", "journals", "books", "institutions")


class UserSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "username", "email", "first_name", "last_name", "role")
        read_only_fields = fields


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = user.role
        return token

    def validate(self, attrs):
        data = super().validate(attrs)
        data["user"] = UserSummarySerializer(self.user).data
        return data


class FileSerializer(serializers.ModelSerializer):
    class Meta:
        model = File
        fields = (
            "id",
            "file_name",
            "file_path",
            "file_type",
            "file_size",
            "mime_type",
            "content_type",
            "content_id",
            "version",
            "is_public",
            "created_at",
        )
        read_only_fields = fields


class RequestedArticleSerializer(serializers.ModelSerializer):
    class Meta:
        model = RequestedArticle
        fields = (
            "id",
            "title",
            "abstract",
            "content",
            "publish_date",
            "language",
            "subject_classification",
            "article",
            "created_at",
        )
        read_only_fields = ("id", "article", "created_at")


class RequestedJournalSerializer(serializers.ModelSerializer):
    class Meta:
        model = RequestedJournal
        fields = (
            "id",
            "name",
            "type",
            "issn",
            "language",
            "publish_date",
            "journal",
            "created_at",
        )
        read_only_fields = ("id", "journal", "created_at")


class RequestedBookSerializer(serializers.ModelSerializer):
    class Meta:
        model = RequestedBook
        fields = (
            "id",
            "title",
            "isbn",
            "language",
            "publish_date",
            "publisher",
            "description",
            "book",
            "created_at",
        )
        read_only_fields = ("id", "book", "created_at")


class RequestedInstitutionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RequestedInstitution
        fields = (
            "id",
            "name",
            "type",
            "country",
            "city",
            "institution",
            "created_at",
        )
        read_only_fields = ("id", "institution", "created_at")


WORK_ITEM_SERIALIZERS: dict[str, type[serializers.ModelSerializer]] = {
    "articles": RequestedArticleSerializer,
    "journals": RequestedJournalSerializer,
    "books": RequestedBookSerializer,
    "institutions": RequestedInstitutionSerializer,
}


class AuthorRequestSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)
    reviewed_by = UserSummarySerializer(read_only=True)
    articles = RequestedArticleSerializer(many=True, read_only=True)
    journals = RequestedJournalSerializer(many=True, read_only=True)
    books = RequestedBookSerializer(many=True, read_only=True)
    institutions = RequestedInstitutionSerializer(many=True, read_only=True)
    files = serializers.SerializerMethodField()

    class Meta:
        model = AuthorRequest
        fields = (
            "id",
            "user",
            "academic_title",
            "first_name",
            "last_name",
            "email",
            "bio",
            "reason_for_request",
            "status",
            "admin_notes",
            "reviewed_by",
            "author",
            "articles",
            "journals",
            "books",
            "institutions",
            "files",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_files(self, obj: AuthorRequest) -> list[dict[str, object]]:
        files = File.objects.attached_to(obj.content_ref)
        return FileSerializer(files, many=True, context=self.context).data


class AuthorRequestWriteSerializer(serializers.ModelSerializer):
    articles = RequestedArticleSerializer(
        many=True, required=False, allow_empty=True)
    journals = RequestedJournalSerializer(
        many=True, required=False, allow_empty=True)
    books = RequestedBookSerializer(
        many=True, required=False, allow_empty=True)
    institutions = RequestedInstitutionSerializer(
        many=True, required=False, allow_empty=True)
    file_ids = serializers.ListField(
        child=serializers.UUIDField(), required=False, allow_empty=True, write_only=True
    )

    class Meta:
        model = AuthorRequest
        fields = (
            "academic_title",
            "first_name",
            "last_name",
            "email",
            "bio",
            "reason_for_request",
            "articles",
            "journals",
            "books",
            "institutions",
            "file_ids",
        )

    def validate_file_ids(self, value):
        file_ids = list(dict.fromkeys(value))
        if not file_ids:
            return []
        user = self.context["request"].user
        owned = set(
            File.objects.filter(pk__in=file_ids, uploaded_by=user).values_list(
                "pk", flat=True)
        )
        missing = [str(file_id)
                   for file_id in file_ids if file_id not in owned]
        if missing:
            raise serializers.ValidationError(
                f"Unknown file ids: {', '.join(missing)}")
        return file_ids

    def create(self, validated_data):
        work_items = {kind: validated_data.pop(
            kind, []) for kind in WORK_ITEM_KINDS}
        file_ids = validated_data.pop("file_ids", [])
        user = self.context["request"].user

        with transaction.atomic():
            # Serializes concurrent submissions by the same account.
            locked_user = User.objects.select_for_update().get(pk=user.pk)
            self._ensure_can_submit(locked_user)
            if not validated_data.get("email"):
                validated_data["email"] = locked_user.email
            author_request = AuthorRequest.objects.create(
                user=locked_user, **validated_data)
            self._create_work_items(author_request, work_items)
            if file_ids:
                File.objects.filter(pk__in=file_ids).retarget(
                    author_request.content_ref)

        transaction.on_commit(
            lambda: notify_admins_of_author_request(author_request))
        return author_request

    def _ensure_can_submit(self, user) -> None:
        if user.role in {User.Role.AUTHOR, User.Role.ADMIN}:
            raise ConflictError("You already have author privileges.")
        active = AuthorRequest.objects.filter(
            user=user,
            status__in=[AuthorRequest.Status.PENDING,
                        AuthorRequest.Status.APPROVED],
        )
        if active.exists():
            raise ConflictError(
                "You already have a pending or approved author request.")

    def _create_work_items(self, author_request: AuthorRequest, work_items: dict[str, list[dict]]) -> None:
        for kind, items in work_items.items():
            if not items:
                continue
            model = WORK_ITEM_SERIALIZERS[kind].Meta.model
            model.objects.bulk_create(
                [model(author_request=author_request, **item) for item in items]
            )


class AuthorRequestUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuthorRequest
        fields = (
            "academic_title",
            "first_name",
            "last_name",
            "email",
            "bio",
            "reason_for_request",
        )


class AuthorRequestDecisionSerializer(serializers.Serializer):
    admin_notes = serializers.CharField(
        required=False, allow_blank=True, allow_null=True)
    rejection_reason = serializers.CharField(
        required=False, allow_blank=True, allow_null=True)

    @property
    def notes(self) -> str | None:
        data = self.validated_data
        for key in ("admin_notes", "rejection_reason"):
            value = data.get(key)
            if value:
                return value
        return data.get("admin_notes")
