# Generated manually for the ScholarHub author-request workflow
from __future__ import annotations

import uuid

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


def _user_fk(related_name: str = "+", **kwargs):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
        **kwargs,
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("password", models.CharField(
                    max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(
                    blank=True, null=True, verbose_name="last login")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("username", models.CharField(blank=True, max_length=150)),
                ("first_name", models.CharField(blank=True, max_length=150)),
                ("last_name", models.CharField(blank=True, max_length=150)),
                ("role", models.CharField(
                    choices=[("user", "User"), ("author", "Author"),
                             ("admin", "Admin")],
                    default="user",
                    max_length=16,
                )),
                ("is_active", models.BooleanField(default=True)),
                ("is_staff", models.BooleanField(default=False)),
                ("date_joined", models.DateTimeField(
                    default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "is_superuser",
                    models.BooleanField(
                        default=False,
                        help_text="Designates that this user has all permissions without explicitly assigning them.",
                        verbose_name="superuser status",
                    ),
                ),
                (
                    "groups",
                    models.ManyToManyField(
                        blank=True,
                        help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.group",
                        verbose_name="groups",
                    ),
                ),
                (
                    "user_permissions",
                    models.ManyToManyField(
                        blank=True,
                        help_text="Specific permissions for this user.",
                        related_name="user_set",
                        related_query_name="user",
                        to="auth.permission",
                        verbose_name="user permissions",
                    ),
                ),
            ],
            options={
                "ordering": ("-date_joined",),
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="Institution",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("type", models.CharField(blank=True, max_length=128)),
                ("country", models.CharField(blank=True, max_length=128)),
                ("city", models.CharField(blank=True, max_length=128)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("updated_by", _user_fk()),
            ],
            options={
                "ordering": ("name",),
                "indexes": [
                    models.Index(fields=["name", "country", "city"],
                                 name="institution_lookup_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Article",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=512)),
                ("abstract", models.TextField(blank=True)),
                ("content", models.TextField(blank=True)),
                ("publish_date", models.DateField(blank=True, null=True)),
                ("language", models.CharField(blank=True, max_length=64)),
                ("subject_classification", models.CharField(
                    blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("institution", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="articles",
                    to="api.institution",
                )),
                ("created_by", _user_fk()),
                ("updated_by", _user_fk()),
            ],
            options={"ordering": ("title",)},
        ),
        migrations.CreateModel(
            name="Journal",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("type", models.CharField(blank=True, max_length=128)),
                ("issn", models.CharField(blank=True, max_length=32)),
                ("language", models.CharField(blank=True, max_length=64)),
                ("publish_date", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", _user_fk()),
                ("updated_by", _user_fk()),
            ],
            options={
                "ordering": ("name",),
                "verbose_name": "Journal",
                "verbose_name_plural": "Journals",
            },
        ),
        migrations.CreateModel(
            name="Book",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=512)),
                ("isbn", models.CharField(blank=True, max_length=32)),
                ("language", models.CharField(blank=True, max_length=64)),
                ("publish_date", models.DateField(blank=True, null=True)),
                ("publisher", models.CharField(blank=True, max_length=255)),
                ("description", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", _user_fk()),
                ("updated_by", _user_fk()),
            ],
            options={"ordering": ("title",)},
        ),
        migrations.CreateModel(
            name="Author",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("first_name", models.CharField(max_length=150)),
                ("last_name", models.CharField(blank=True, max_length=150)),
                ("academic_title", models.CharField(blank=True, max_length=64)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("bio", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("institution", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="authors",
                    to="api.institution",
                )),
                ("user", models.OneToOneField(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="author_profile",
                    to=settings.AUTH_USER_MODEL,
                )),
                ("updated_by", _user_fk()),
            ],
            options={"ordering": ("last_name", "first_name")},
        ),
        migrations.CreateModel(
            name="AuthorArticle",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("article", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="author_links",
                    to="api.article",
                )),
                ("author", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="article_links",
                    to="api.author",
                )),
            ],
            options={"unique_together": {("author", "article")}},
        ),
        migrations.CreateModel(
            name="AuthorBook",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("author", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="book_links",
                    to="api.author",
                )),
                ("book", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="author_links",
                    to="api.book",
                )),
            ],
            options={"unique_together": {("author", "book")}},
        ),
        migrations.AddField(
            model_name="author",
            name="articles",
            field=models.ManyToManyField(
                blank=True,
                related_name="authors",
                through="api.AuthorArticle",
                to="api.article",
            ),
        ),
        migrations.AddField(
            model_name="author",
            name="books",
            field=models.ManyToManyField(
                blank=True,
                related_name="authors",
                through="api.AuthorBook",
                to="api.book",
            ),
        ),
        migrations.CreateModel(
            name="File",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("file_name", models.CharField(max_length=255)),
                ("file_path", models.URLField(max_length=1024)),
                ("file_type", models.CharField(blank=True, max_length=64)),
                ("file_size", models.PositiveBigIntegerField(default=0)),
                ("mime_type", models.CharField(blank=True, max_length=128)),
                ("content_type", models.CharField(
                    blank=True,
                    choices=[
                        ("article", "Article"),
                        ("book", "Book"),
                        ("journal", "Journal"),
                        ("author_request", "Author request"),
                    ],
                    max_length=32,
                    null=True,
                )),
                ("content_id", models.UUIDField(blank=True, null=True)),
                ("version", models.CharField(default="1.0", max_length=16)),
                ("is_public", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("uploaded_by", _user_fk(related_name="files")),
            ],
            options={
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["content_type", "content_id"],
                                 name="file_content_key_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuthorRequest",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4,
                 editable=False, primary_key=True, serialize=False)),
                ("academic_title", models.CharField(blank=True, max_length=64)),
                ("first_name", models.CharField(max_length=150)),
                ("last_name", models.CharField(max_length=150)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("bio", models.TextField(blank=True)),
                ("reason_for_request", models.TextField(blank=True)),
                ("status", models.CharField(
                    choices=[
                        ("pending", "Pending"),
                        ("approved", "Approved"),
                        ("rejected", "Rejected"),
                    ],
                    default="pending",
                    max_length=16,
                )),
                ("admin_notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("author", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="author_requests",
                    to="api.author",
                )),
                ("reviewed_by", _user_fk(
                    related_name="reviewed_author_requests")),
                ("user", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="author_requests",
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["user", "status"],
                                 name="authorreq_user_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="RequestedInstitution",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("type", models.CharField(blank=True, max_length=128)),
                ("country", models.CharField(blank=True, max_length=128)),
                ("city", models.CharField(blank=True, max_length=128)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("author_request", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="institutions",
                    to="api.authorrequest",
                )),
                ("institution", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+",
                    to="api.institution",
                )),
            ],
            options={"ordering": ("id",)},
        ),
        migrations.CreateModel(
            name="RequestedArticle",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=512)),
                ("abstract", models.TextField(blank=True)),
                ("content", models.TextField(blank=True)),
                ("publish_date", models.DateField(blank=True, null=True)),
                ("language", models.CharField(blank=True, max_length=64)),
                ("subject_classification", models.CharField(
                    blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("article", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+",
                    to="api.article",
                )),
                ("author_request", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="articles",
                    to="api.authorrequest",
                )),
            ],
            options={"ordering": ("id",)},
        ),
        migrations.CreateModel(
            name="RequestedJournal",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("type", models.CharField(blank=True, max_length=128)),
                ("issn", models.CharField(blank=True, max_length=32)),
                ("language", models.CharField(blank=True, max_length=64)),
                ("publish_date", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("author_request", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="journals",
                    to="api.authorrequest",
                )),
                ("journal", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+",
                    to="api.journal",
                )),
            ],
            options={"ordering": ("id",)},
        ),
        migrations.CreateModel(
            name="RequestedBook",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=512)),
                ("isbn", models.CharField(blank=True, max_length=32)),
                ("language", models.CharField(blank=True, max_length=64)),
                ("publish_date", models.DateField(blank=True, null=True)),
                ("publisher", models.CharField(blank=True, max_length=255)),
                ("description", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("author_request", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="books",
                    to="api.authorrequest",
                )),
                ("book", models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.SET_NULL,
                    related_name="+",
                    to="api.book",
                )),
            ],
            options={"ordering": ("id",)},
        ),
        migrations.CreateModel(
            name="AuthorApprovalLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("mode", models.CharField(
                    choices=[
                        ("transactional", "Transactional"),
                        ("stepwise", "Stepwise"),
                    ],
                    default="transactional",
                    max_length=16,
                )),
                ("status", models.CharField(
                    choices=[
                        ("running", "Running"),
                        ("success", "Success"),
                        ("failed", "Failed"),
                    ],
                    default="running",
                    max_length=16,
                )),
                ("last_step", models.CharField(
                    blank=True,
                    choices=[
                        ("author", "Author record"),
                        ("role", "User role"),
                        ("institutions", "Institutions"),
                        ("articles", "Articles"),
                        ("journals", "Journals"),
                        ("books", "Books"),
                        ("status", "Request status"),
                    ],
                    max_length=16,
                )),
                ("error_message", models.TextField(blank=True)),
                ("started_at", models.DateTimeField(
                    default=django.utils.timezone.now)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("author_request", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="approval_logs",
                    to="api.authorrequest",
                )),
                ("reviewer", _user_fk()),
            ],
            options={
                "ordering": ("-started_at", "-id"),
                "verbose_name": "Author approval log",
                "verbose_name_plural": "Author approval logs",
            },
        ),
    ]
