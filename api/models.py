from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable

from django.conf import settings
from django.contrib.auth.base_user import AbstractBaseUser, BaseUserManager
from django.contrib.auth.models import PermissionsMixin
from django.db import models
from django.db.models import Q
from django.utils import timezone


class UserManager(BaseUserManager):
    def create_user(self, email: str, password: str | None = None, **extra_fields):
        if not email:
            raise ValueError("Users must have an email address")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email: str, password: str, **extra_fields):
        if not password:
            raise ValueError("Superusers must have a password.")
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_active", True)
        extra_fields.setdefault("role", User.Role.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    class Role(models.TextChoices):
        USER = "user", "User"
        AUTHOR = "author", "Author"
        ADMIN = "admin", "Admin"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    username = models.CharField(max_length=150, blank=True)
    first_name = models.CharField(max_length=150, blank=True)
    last_name = models.CharField(max_length=150, blank=True)
    role = models.CharField(
        max_length=16, choices=Role.choices, default=Role.USER)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "email"
    EMAIL_FIELD = "email"
    REQUIRED_FIELDS: list[str] = []

    objects = UserManager()

    class Meta:
        ordering = ("-date_joined",)

    def __str__(self) -> str:
        return self.email

    @property
    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN


class Institution(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=128, blank=True)
    country = models.CharField(max_length=128, blank=True)
    city = models.CharField(max_length=128, blank=True)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name",)
        indexes = [models.Index(fields=("name", "country", "city"), name="institution_lookup_idx")]

    def __str__(self) -> str:
        location = ", ".join(part for part in (self.city, self.country) if part)
        return f"{self.name} ({location})" if location else self.name


class Article(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=512)
    abstract = models.TextField(blank=True)
    content = models.TextField(blank=True)
    publish_date = models.DateField(null=True, blank=True)
    language = models.CharField(max_length=64, blank=True)
    subject_classification = models.CharField(max_length=255, blank=True)
    institution = models.ForeignKey(
        Institution,
        related_name="articles",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("title",)

    def __str__(self) -> str:
        return self.title


class Journal(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=128, blank=True)
    issn = models.CharField(max_length=32, blank=True)
    language = models.CharField(max_length=64, blank=True)
    publish_date = models.DateField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name",)
        verbose_name = "Journal"
        verbose_name_plural = "Journals"

    def __str__(self) -> str:
        return self.name


class Book(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=512)
    isbn = models.CharField(max_length=32, blank=True)
    language = models.CharField(max_length=64, blank=True)
    publish_date = models.DateField(null=True, blank=True)
    publisher = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("title",)

    def __str__(self) -> str:
        return self.title


class Author(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        related_name="author_profile",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150, blank=True)
    academic_title = models.CharField(max_length=64, blank=True)
    email = models.EmailField(blank=True)
    bio = models.TextField(blank=True)
    institution = models.ForeignKey(
        Institution,
        related_name="authors",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    articles = models.ManyToManyField(
        Article,
        through="AuthorArticle",
        related_name="authors",
        blank=True,
    )
    books = models.ManyToManyField(
        Book,
        through="AuthorBook",
        related_name="authors",
        blank=True,
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("last_name", "first_name")

    def __str__(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        if self.academic_title:
            return f"{self.academic_title} {name}"
        return name


class AuthorArticle(models.Model):
    id = models.BigAutoField(primary_key=True)
    author = models.ForeignKey(
        Author, related_name="article_links", on_delete=models.CASCADE)
    article = models.ForeignKey(
        Article, related_name="author_links", on_delete=models.CASCADE)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("author", "article")

    def __str__(self) -> str:
        return f"{self.author} -> {self.article}"


class AuthorBook(models.Model):
    id = models.BigAutoField(primary_key=True)
    author = models.ForeignKey(
        Author, related_name="book_links", on_delete=models.CASCADE)
    book = models.ForeignKey(
        Book, related_name="author_links", on_delete=models.CASCADE)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("author", "book")

    def __str__(self) -> str:
        return f"{self.author} -> {self.book}"


class ContentKind(models.TextChoices):
    ARTICLE = "article", "Article"
    BOOK = "book", "Book"
    JOURNAL = "journal", "Journal"
    AUTHOR_REQUEST = "author_request", "Author request"


@dataclass(frozen=True)
class ContentRef:
    """The owner of an attachment: one kind plus the owning row's id."""

    kind: ContentKind
    owner_id: uuid.UUID

    @classmethod
    def for_instance(cls, instance: models.Model) -> "ContentRef":
        kinds = {
            Article: ContentKind.ARTICLE,
            Book: ContentKind.BOOK,
            Journal: ContentKind.JOURNAL,
            AuthorRequest: ContentKind.AUTHOR_REQUEST,
        }
        try:
            kind = kinds[type(instance)]
        except KeyError as exc:
            raise TypeError(
                f"{type(instance).__name__} cannot own files") from exc
        return cls(kind=kind, owner_id=instance.pk)

    def as_filter(self) -> Q:
        return Q(content_type=self.kind, content_id=self.owner_id)


class FileQuerySet(models.QuerySet):
    def attached_to(self, ref: ContentRef) -> "FileQuerySet":
        return self.filter(ref.as_filter())

    def attached_to_any(self, refs: Iterable[ContentRef]) -> "FileQuerySet":
        condition = Q(pk__in=[])
        for ref in refs:
            condition |= ref.as_filter()
        return self.filter(condition)

    def retarget(self, ref: ContentRef | None) -> int:
        return self.update(
            content_type=ref.kind if ref else None,
            content_id=ref.owner_id if ref else None,
            updated_at=timezone.now(),
        )


class File(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    file_name = models.CharField(max_length=255)
    file_path = models.URLField(max_length=1024)
    file_type = models.CharField(max_length=64, blank=True)
    file_size = models.PositiveBigIntegerField(default=0)
    mime_type = models.CharField(max_length=128, blank=True)
    content_type = models.CharField(
        max_length=32, choices=ContentKind.choices, null=True, blank=True)
    content_id = models.UUIDField(null=True, blank=True)
    version = models.CharField(max_length=16, default="1.0")
    is_public = models.BooleanField(default=False)
    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="files",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = FileQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at",)
        indexes = [models.Index(fields=("content_type", "content_id"), name="file_content_key_idx")]

    def __str__(self) -> str:
        return self.file_name

    @property
    def owner(self) -> ContentRef | None:
        if not self.content_type or self.content_id is None:
            return None
        return ContentRef(kind=ContentKind(self.content_type), owner_id=self.content_id)


class AuthorRequest(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="author_requests",
        on_delete=models.CASCADE,
    )
    academic_title = models.CharField(max_length=64, blank=True)
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    email = models.EmailField(blank=True)
    bio = models.TextField(blank=True)
    reason_for_request = models.TextField(blank=True)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    admin_notes = models.TextField(blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="reviewed_author_requests",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    author = models.ForeignKey(
        Author,
        related_name="author_requests",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [models.Index(fields=("user", "status"), name="authorreq_user_status_idx")]

    def __str__(self) -> str:
        return f"{self.first_name} {self.last_name} ({self.get_status_display()})"

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING

    @property
    def content_ref(self) -> ContentRef:
        return ContentRef.for_instance(self)


class RequestedInstitution(models.Model):
    id = models.BigAutoField(primary_key=True)
    author_request = models.ForeignKey(
        AuthorRequest,
        related_name="institutions",
        on_delete=models.CASCADE,
    )
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=128, blank=True)
    country = models.CharField(max_length=128, blank=True)
    city = models.CharField(max_length=128, blank=True)
    institution = models.ForeignKey(
        Institution,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("id",)

    def __str__(self) -> str:
        return self.name


class RequestedArticle(models.Model):
    id = models.BigAutoField(primary_key=True)
    author_request = models.ForeignKey(
        AuthorRequest,
        related_name="articles",
        on_delete=models.CASCADE,
    )
    title = models.CharField(max_length=512)
    abstract = models.TextField(blank=True)
    content = models.TextField(blank=True)
    publish_date = models.DateField(null=True, blank=True)
    language = models.CharField(max_length=64, blank=True)
    subject_classification = models.CharField(max_length=255, blank=True)
    article = models.ForeignKey(
        Article,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("id",)

    def __str__(self) -> str:
        return self.title


class RequestedJournal(models.Model):
    id = models.BigAutoField(primary_key=True)
    author_request = models.ForeignKey(
        AuthorRequest,
        related_name="journals",
        on_delete=models.CASCADE,
    )
    name = models.CharField(max_length=255)
    type = models.CharField(max_length=128, blank=True)
    issn = models.CharField(max_length=32, blank=True)
    language = models.CharField(max_length=64, blank=True)
    publish_date = models.DateField(null=True, blank=True)
    journal = models.ForeignKey(
        Journal,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("id",)

    def __str__(self) -> str:
        return self.name


class RequestedBook(models.Model):
    id = models.BigAutoField(primary_key=True)
    author_request = models.ForeignKey(
        AuthorRequest,
        related_name="books",
        on_delete=models.CASCADE,
    )
    title = models.CharField(max_length=512)
    isbn = models.CharField(max_length=32, blank=True)
    language = models.CharField(max_length=64, blank=True)
    publish_date = models.DateField(null=True, blank=True)
    publisher = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    book = models.ForeignKey(
        Book,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("id",)

    def __str__(self) -> str:
        return self.title


class AuthorApprovalLog(models.Model):
    class Mode(models.TextChoices):
        TRANSACTIONAL = "transactional", "Transactional"
        STEPWISE = "stepwise", "Stepwise"

    class Status(models.TextChoices):
        RUNNING = "running", "Running"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"

    class Step(models.TextChoices):
        AUTHOR = "author", "Author record"
        ROLE = "role", "User role"
        INSTITUTIONS = "institutions", "Institutions"
        ARTICLES = "articles", "Articles"
        JOURNALS = "journals", "Journals"
        BOOKS = "books", "Books"
        STATUS = "status", "Request status"

    id = models.BigAutoField(primary_key=True)
    author_request = models.ForeignKey(
        AuthorRequest,
        related_name="approval_logs",
        on_delete=models.CASCADE,
    )
    reviewer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    mode = models.CharField(
        max_length=16, choices=Mode.choices, default=Mode.TRANSACTIONAL)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.RUNNING,
    )
    last_step = models.CharField(
        max_length=16, choices=Step.choices, blank=True)
    error_message = models.TextField(blank=True)
    started_at = models.DateTimeField(default=timezone.now)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ("-started_at", "-id")
        verbose_name = "Author approval log"
        verbose_name_plural = "Author approval logs"

    def __str__(self) -> str:
        started = self.started_at.astimezone(
            timezone.get_current_timezone()) if self.started_at else None
        ts = started.strftime("%Y-%m-%d %H:%M") if started else "unknown"
        return f"{self.author_request_id} – {self.get_status_display()} ({ts})"

    def mark_step(self, step: str) -> None:
        self.last_step = step
        self.save(update_fields=["last_step"])

    def mark_success(self) -> None:
        self.status = self.Status.SUCCESS
        self.error_message = ""
        self.finished_at = timezone.now()
        self.save(update_fields=[
            "status",
            "last_step",
            "error_message",
            "finished_at",
        ])

    def mark_failure(self, reason: str) -> None:
        truncated_reason = (reason or "").strip()
        if truncated_reason and len(truncated_reason) > 2000:
            truncated_reason = f"{truncated_reason[:1997]}..."
        self.status = self.Status.FAILED
        self.error_message = truncated_reason
        self.finished_at = timezone.now()
        self.save(update_fields=[
            "mode",
            "status",
            "last_step",
            "error_message",
            "finished_at",
        ])
