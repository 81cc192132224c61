from datetime import timedelta
from io import StringIO
from smtplib import SMTPException
from unittest.mock import patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.db import DatabaseError
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken

from .exceptions import DependencyError
from .models import (
    Article,
    Author,
    AuthorApprovalLog,
    AuthorArticle,
    AuthorBook,
    AuthorRequest,
    Book,
    ContentKind,
    ContentRef,
    File,
    Institution,
    Journal,
    RequestedArticle,
)
from .review import engine


User = get_user_model()

STEPWISE = {"TRANSACTIONAL_APPROVAL": False}


class SessionConfigTests(APITestCase):
    def test_token_lifetimes(self):
        self.assertEqual(
            settings.SIMPLE_JWT["ACCESS_TOKEN_LIFETIME"], timedelta(minutes=30))
        self.assertEqual(
            settings.SIMPLE_JWT["REFRESH_TOKEN_LIFETIME"], timedelta(hours=2))


class AuthenticationTests(APITestCase):
    def test_access_token_carries_role(self):
        User.objects.create_user(
            email="ada@example.com", password="Secretpass123")
        response = self.client.post(
            reverse("auth-token"),
            {"email": "ada@example.com", "password": "Secretpass123"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        token = AccessToken(response.data["access"])
        self.assertEqual(token["role"], User.Role.USER)
        self.assertEqual(response.data["user"]["email"], "ada@example.com")

    def test_superuser_is_admin(self):
        admin = User.objects.create_superuser(
            email="admin@example.com", password="Adminpass123")
        self.assertEqual(admin.role, User.Role.ADMIN)
        self.assertTrue(admin.is_admin)


class AuthorRequestTestCase(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_superuser(
            email="admin@example.com", password="Adminpass123")
        self.user = User.objects.create_user(
            email="ada@example.com", password="Secretpass123", username="ada")
        self.other = User.objects.create_user(
            email="charles@example.com", password="Secretpass123")
        mail.outbox.clear()

    def submit(self, user=None, **overrides):
        payload = {"first_name": "Ada", "last_name": "Lovelace"}
        payload.update(overrides)
        self.client.force_authenticate(user=user or self.user)
        return self.client.post(reverse("author-request-list"), payload, format="json")

    def submit_ok(self, user=None, **overrides) -> AuthorRequest:
        response = self.submit(user=user, **overrides)
        self.assertEqual(response.status_code,
                         status.HTTP_201_CREATED, response.data)
        return AuthorRequest.objects.get(pk=response.data["data"]["id"])

    def approve(self, author_request, **payload):
        self.client.force_authenticate(user=self.admin)
        return self.client.put(
            reverse("author-request-approve", args=[author_request.pk]),
            payload,
            format="json",
        )

    def reject(self, author_request, **payload):
        self.client.force_authenticate(user=self.admin)
        return self.client.put(
            reverse("author-request-reject", args=[author_request.pk]),
            payload,
            format="json",
        )

    def upload(self, user=None, name="evidence.pdf") -> File:
        return File.objects.create(
            file_name=name,
            file_path=f"https://files.example.com/{name}",
            mime_type="application/pdf",
            uploaded_by=user or self.user,
        )


class AuthorRequestSubmissionTests(AuthorRequestTestCase):
    def test_submission_creates_pending_request_with_children(self):
        evidence = self.upload()
        response = self.submit(
            academic_title="Countess",
            reason_for_request="Published notes on the Analytical Engine.",
            articles=[{"title": "On Analysis", "language": "en"}],
            journals=[{"name": "Scientific Memoirs", "issn": "1234-5678"}],
            books=[{"title": "Sketch of the Analytical Engine",
                    "publisher": "Taylor"}],
            institutions=[{"name": "University of London",
                           "country": "UK", "city": "London"}],
            file_ids=[str(evidence.pk)],
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data["success"])
        data = response.data["data"]
        self.assertEqual(data["status"], AuthorRequest.Status.PENDING)
        self.assertEqual(data["email"], "ada@example.com")
        self.assertEqual(len(data["articles"]), 1)
        self.assertEqual(len(data["journals"]), 1)
        self.assertEqual(len(data["books"]), 1)
        self.assertEqual(len(data["institutions"]), 1)
        self.assertEqual(len(data["files"]), 1)

        author_request = AuthorRequest.objects.get(pk=data["id"])
        evidence.refresh_from_db()
        self.assertEqual(evidence.owner, author_request.content_ref)

    def test_missing_names_fail_validation(self):
        response = self.submit(last_name="   ")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data["success"])
        self.assertEqual(response.data["error"], "validation_error")
        self.assertIn("last_name", response.data["errors"])
        self.assertFalse(AuthorRequest.objects.exists())

    def test_second_submission_while_pending_conflicts(self):
        self.submit_ok()
        response = self.submit()

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "conflict")
        self.assertEqual(AuthorRequest.objects.filter(
            user=self.user).count(), 1)

    def test_submission_with_approved_request_conflicts(self):
        AuthorRequest.objects.create(
            user=self.user,
            first_name="Ada",
            last_name="Lovelace",
            status=AuthorRequest.Status.APPROVED,
        )
        response = self.submit()

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "conflict")

    def test_authors_and_admins_cannot_submit(self):
        self.user.role = User.Role.AUTHOR
        self.user.save()

        response = self.submit()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "conflict")

        response = self.submit(user=self.admin)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "conflict")
        self.assertFalse(AuthorRequest.objects.exists())

    def test_rejected_user_may_submit_again(self):
        AuthorRequest.objects.create(
            user=self.user,
            first_name="Ada",
            last_name="Lovelace",
            status=AuthorRequest.Status.REJECTED,
        )
        self.submit_ok()
        self.assertEqual(AuthorRequest.objects.filter(
            user=self.user).count(), 2)

    def test_cannot_attach_files_uploaded_by_someone_else(self):
        foreign = self.upload(user=self.other, name="foreign.pdf")
        response = self.submit(file_ids=[str(foreign.pk)])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("file_ids", response.data["errors"])
        foreign.refresh_from_db()
        self.assertIsNone(foreign.owner)

    def test_admins_are_notified_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.submit_ok(reason_for_request="Prior publications")

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.subject, "New Author Request")
        self.assertEqual(message.to, ["admin@example.com"])
        self.assertIn("Ada Lovelace", message.body)

    def test_admin_notification_failure_does_not_fail_submission(self):
        with patch(
            "api.utils.send_admin_author_request_notification",
            side_effect=SMTPException("mail server down"),
        ):
            with self.captureOnCommitCallbacks(execute=True):
                response = self.submit()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(AuthorRequest.objects.count(), 1)

    def test_unauthenticated_submission_is_rejected(self):
        response = self.client.post(
            reverse("author-request-list"),
            {"first_name": "Ada", "last_name": "Lovelace"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data["error"], "not_authenticated")


class AuthorRequestQueryTests(AuthorRequestTestCase):
    def test_list_is_admin_only(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get(reverse("author-request-list"))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data, {
            "success": False,
            "error": "forbidden",
            "message": "Admin access is required.",
        })

    def test_list_paginates_filters_and_searches(self):
        self.submit_ok()
        self.submit_ok(user=self.other, first_name="Charles",
                       last_name="Babbage")
        third = User.objects.create_user(email="mary@example.com")
        rejected = self.submit_ok(
            user=third, first_name="Mary", last_name="Somerville")
        self.reject(rejected, admin_notes="Incomplete")

        self.client.force_authenticate(user=self.admin)
        response = self.client.get(
            reverse("author-request-list"), {"limit": 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["success"])
        self.assertEqual(len(response.data["data"]), 2)
        self.assertEqual(
            response.data["pagination"],
            {"total": 3, "page": 1, "limit": 2, "pages": 2},
        )

        pending = self.client.get(
            reverse("author-request-list"), {"status": "pending"})
        self.assertEqual(pending.data["pagination"]["total"], 2)

        search = self.client.get(
            reverse("author-request-list"), {"search": "Babbage"})
        self.assertEqual(search.data["pagination"]["total"], 1)
        self.assertEqual(search.data["data"][0]["last_name"], "Babbage")

        ordered = self.client.get(
            reverse("author-request-list"), {"sort": "last_name"})
        self.assertEqual(
            [item["last_name"] for item in ordered.data["data"]],
            ["Babbage", "Lovelace", "Somerville"],
        )

    def test_unknown_status_filter_is_rejected(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(
            reverse("author-request-list"), {"status": "archived"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "validation_error")

    def test_detail_visible_to_owner_and_admin_only(self):
        author_request = self.submit_ok()
        url = reverse("author-request-detail", args=[author_request.pk])

        self.client.force_authenticate(user=self.user)
        self.assertEqual(self.client.get(url).status_code, status.HTTP_200_OK)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["data"]["user"]["email"],
                         "ada@example.com")

        self.client.force_authenticate(user=self.other)
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "forbidden")

    def test_unknown_request_is_not_found(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(
            reverse("author-request-detail",
                    args=["00000000-0000-0000-0000-000000000000"])
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "not_found")

    def test_me_returns_latest_request_or_null(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get(reverse("author-request-me"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data["data"])

        AuthorRequest.objects.create(
            user=self.user,
            first_name="Ada",
            last_name="Byron",
            status=AuthorRequest.Status.REJECTED,
        )
        latest = self.submit_ok()

        response = self.client.get(reverse("author-request-me"))
        self.assertEqual(response.data["data"]["id"], str(latest.pk))


class AuthorRequestEditingTests(AuthorRequestTestCase):
    def test_owner_can_update_pending_request(self):
        author_request = self.submit_ok()
        response = self.client.patch(
            reverse("author-request-detail", args=[author_request.pk]),
            {"bio": "Mathematician"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        author_request.refresh_from_db()
        self.assertEqual(author_request.bio, "Mathematician")

    def test_put_accepts_partial_fields(self):
        author_request = self.submit_ok()
        response = self.client.put(
            reverse("author-request-detail", args=[author_request.pk]),
            {"bio": "Mathematician"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["success"])
        author_request.refresh_from_db()
        self.assertEqual(author_request.bio, "Mathematician")
        self.assertEqual(author_request.first_name, "Ada")

    def test_non_owner_and_reviewed_requests_are_not_editable(self):
        author_request = self.submit_ok()
        url = reverse("author-request-detail", args=[author_request.pk])

        self.client.force_authenticate(user=self.other)
        response = self.client.patch(url, {"bio": "Hijacked"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        self.reject(author_request, admin_notes="Not enough detail")
        self.client.force_authenticate(user=self.user)
        response = self.client.patch(url, {"bio": "Late edit"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_owner_can_delete_pending_request_and_files_are_detached(self):
        evidence = self.upload()
        author_request = self.submit_ok(
            articles=[{"title": "On Analysis"}],
            file_ids=[str(evidence.pk)],
        )
        response = self.client.delete(
            reverse("author-request-detail", args=[author_request.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(AuthorRequest.objects.exists())
        self.assertFalse(RequestedArticle.objects.exists())
        evidence.refresh_from_db()
        self.assertIsNone(evidence.owner)

    def test_work_items_can_be_added_and_removed(self):
        author_request = self.submit_ok()
        add_url = reverse(
            "author-request-work-items",
            kwargs={"pk": author_request.pk, "kind": "articles"},
        )

        response = self.client.post(
            add_url, {"title": "Notes on the Engine"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(author_request.articles.count(), 1)
        item_id = response.data["data"]["id"]

        response = self.client.post(
            reverse(
                "author-request-work-items",
                kwargs={"pk": author_request.pk, "kind": "institutions"},
            ),
            {"name": "Royal Society", "country": "UK", "city": "London"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(author_request.institutions.count(), 1)

        remove_url = reverse(
            "author-request-work-item-detail",
            kwargs={"pk": author_request.pk,
                    "kind": "articles", "item_id": item_id},
        )
        response = self.client.delete(remove_url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(author_request.articles.count(), 0)

        response = self.client.delete(remove_url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_work_items_require_ownership(self):
        author_request = self.submit_ok()
        self.client.force_authenticate(user=self.other)
        response = self.client.post(
            reverse(
                "author-request-work-items",
                kwargs={"pk": author_request.pk, "kind": "books"},
            ),
            {"title": "Borrowed"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(author_request.books.count(), 0)


class AuthorRequestApprovalTests(AuthorRequestTestCase):
    def test_approval_materializes_claimed_works(self):
        author_request = self.submit_ok(articles=[{"title": "On Analysis"}])
        response = self.approve(author_request, admin_notes="Welcome aboard")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        author = Author.objects.get(user=self.user)
        self.assertEqual(response.data["data"], {
            "request_id": str(author_request.pk),
            "author_id": str(author.pk),
            "user_id": str(self.user.pk),
        })
        self.assertEqual(author.first_name, "Ada")
        article = Article.objects.get(title="On Analysis")
        self.assertEqual(article.updated_by, self.admin)
        self.assertTrue(AuthorArticle.objects.filter(
            author=author, article=article).exists())

        self.user.refresh_from_db()
        self.assertEqual(self.user.role, User.Role.AUTHOR)
        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.APPROVED)
        self.assertEqual(author_request.reviewed_by, self.admin)
        self.assertEqual(author_request.admin_notes, "Welcome aboard")
        self.assertEqual(author_request.author, author)
        self.assertEqual(author_request.articles.get().article, article)

    @override_settings(FRONTEND_BASE_URL="http://localhost:4200")
    def test_approval_sends_email_and_logs_fast_path(self):
        author_request = self.submit_ok()
        self.approve(author_request)

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ["ada@example.com"])
        self.assertEqual(message.subject, "Author Request Approved")
        self.assertIn("http://localhost:4200/login", message.body)

        log = AuthorApprovalLog.objects.get(author_request=author_request)
        self.assertEqual(log.mode, AuthorApprovalLog.Mode.TRANSACTIONAL)
        self.assertEqual(log.status, AuthorApprovalLog.Status.SUCCESS)
        self.assertEqual(log.last_step, AuthorApprovalLog.Step.STATUS)

    def test_every_claimed_work_type_is_materialized(self):
        author_request = self.submit_ok(
            articles=[{"title": "On Analysis"}, {"title": "Note G"}],
            journals=[{"name": "Scientific Memoirs"}],
            books=[{"title": "Sketch of the Analytical Engine"}],
            institutions=[
                {"name": "University of London", "country": "UK", "city": "London"},
                {"name": "Royal Society", "country": "UK", "city": "London"},
            ],
        )
        self.approve(author_request)

        author = Author.objects.get(user=self.user)
        first_institution = Institution.objects.get(
            name="University of London")
        self.assertEqual(author.institution, first_institution)
        self.assertEqual(Institution.objects.count(), 2)
        self.assertEqual(Article.objects.count(), 2)
        self.assertEqual(
            AuthorArticle.objects.filter(author=author).count(), 2)
        self.assertTrue(all(
            article.institution == first_institution for article in Article.objects.all()
        ))
        self.assertEqual(Journal.objects.count(), 1)
        self.assertEqual(Book.objects.count(), 1)
        self.assertTrue(AuthorBook.objects.filter(author=author).exists())

    def test_files_follow_the_last_materialized_article(self):
        evidence = self.upload()
        author_request = self.submit_ok(
            articles=[{"title": "First"}, {"title": "Second"}, {"title": "Third"}],
            file_ids=[str(evidence.pk)],
        )
        self.approve(author_request)

        self.assertEqual(Article.objects.count(), 3)
        last = author_request.articles.order_by("-id").first().article
        evidence.refresh_from_db()
        self.assertEqual(evidence.owner, ContentRef(
            kind=ContentKind.ARTICLE, owner_id=last.pk))
        self.assertFalse(File.objects.attached_to(
            author_request.content_ref).exists())

    def test_files_end_on_last_book_when_books_are_claimed(self):
        evidence = self.upload()
        author_request = self.submit_ok(
            articles=[{"title": "On Analysis"}],
            books=[{"title": "Sketch of the Analytical Engine"}],
            file_ids=[str(evidence.pk)],
        )
        self.approve(author_request)

        book = Book.objects.get()
        self.assertEqual(File.objects.attached_to(
            ContentRef.for_instance(book)).get(), evidence)

    def test_institutions_are_deduplicated_across_requests(self):
        claim = [{"name": "University of London",
                  "country": "UK", "city": "London"}]
        first = self.submit_ok(institutions=claim)
        second = self.submit_ok(
            user=self.other, first_name="Charles", last_name="Babbage", institutions=claim)

        self.assertEqual(self.approve(first).status_code, status.HTTP_200_OK)
        self.assertEqual(self.approve(second).status_code, status.HTTP_200_OK)

        self.assertEqual(Institution.objects.count(), 1)
        institution = Institution.objects.get()
        self.assertEqual(
            set(Author.objects.values_list("institution", flat=True)), {institution.pk})

    def test_second_approval_is_not_found(self):
        author_request = self.submit_ok(articles=[{"title": "On Analysis"}])
        self.assertEqual(self.approve(author_request).status_code,
                         status.HTTP_200_OK)

        response = self.approve(author_request)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "not_found")
        self.assertEqual(Author.objects.count(), 1)
        self.assertEqual(Article.objects.count(), 1)

    @override_settings(AUTHOR_REQUESTS=STEPWISE)
    def test_concurrent_approval_loses_on_status_update(self):
        author_request = self.submit_ok()

        def competing_review(target):
            AuthorRequest.objects.filter(pk=target.pk).update(
                status=AuthorRequest.Status.APPROVED)

        with patch("api.review.engine.promote_user_role", side_effect=competing_review):
            response = self.approve(author_request)

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(Author.objects.count(), 1)
        author_request.refresh_from_db()
        self.assertIsNone(author_request.reviewed_by)
        log = AuthorApprovalLog.objects.get(author_request=author_request)
        self.assertEqual(log.status, AuthorApprovalLog.Status.FAILED)

    def test_approval_requires_admin(self):
        author_request = self.submit_ok()
        self.client.force_authenticate(user=self.user)
        response = self.client.put(
            reverse("author-request-approve", args=[author_request.pk]), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Author.objects.exists())

    def test_admin_role_is_never_demoted(self):
        author_request = AuthorRequest.objects.create(
            user=self.admin, first_name="Grace", last_name="Hopper")
        self.approve(author_request)

        self.admin.refresh_from_db()
        self.assertEqual(self.admin.role, User.Role.ADMIN)
        self.assertTrue(Author.objects.filter(user=self.admin).exists())

    def test_approval_email_failure_is_swallowed(self):
        author_request = self.submit_ok()
        with patch(
            "api.review.engine.send_author_approval_email",
            side_effect=SMTPException("mail server down"),
        ):
            response = self.approve(author_request)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.APPROVED)


class AuthorRequestRecoveryTests(AuthorRequestTestCase):
    def test_fast_path_failure_falls_back_to_stepwise(self):
        author_request = self.submit_ok(articles=[{"title": "On Analysis"}])
        with patch(
            "api.review.engine._approve_in_transaction",
            side_effect=DatabaseError("transactional approval unavailable"),
        ):
            response = self.approve(author_request)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Article.objects.count(), 1)
        log = AuthorApprovalLog.objects.get(author_request=author_request)
        self.assertEqual(log.mode, AuthorApprovalLog.Mode.STEPWISE)
        self.assertEqual(log.status, AuthorApprovalLog.Status.SUCCESS)

    def test_fast_path_rolls_back_all_steps(self):
        author_request = self.submit_ok(
            institutions=[{"name": "Royal Society",
                           "country": "UK", "city": "London"}],
            articles=[{"title": "On Analysis"}],
        )
        with patch("api.review.engine.build_article", side_effect=DatabaseError("insert failed")), \
                patch("api.review.engine._approve_stepwise", side_effect=DependencyError("stepwise disabled")):
            response = self.approve(author_request)

        self.assertEqual(response.status_code,
                         status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertFalse(Author.objects.exists())
        self.assertFalse(Institution.objects.exists())
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, User.Role.USER)

    @override_settings(AUTHOR_REQUESTS=STEPWISE)
    def test_stepwise_failure_is_reported_and_retry_is_clean(self):
        evidence = self.upload()
        author_request = self.submit_ok(
            institutions=[{"name": "Royal Society",
                           "country": "UK", "city": "London"}],
            articles=[{"title": "First"}, {"title": "Second"}],
            file_ids=[str(evidence.pk)],
        )
        original_build = engine.build_article
        calls = []

        def flaky_build(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise DatabaseError("insert failed")
            return original_build(*args, **kwargs)

        with patch("api.review.engine.build_article", side_effect=flaky_build):
            response = self.approve(author_request)

        self.assertEqual(response.status_code,
                         status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["error"], "dependency_error")
        self.assertIn("articles", response.data["message"])
        self.assertNotIn("Traceback", response.data["message"])

        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.PENDING)
        self.assertEqual(Author.objects.count(), 1)
        self.assertEqual(Article.objects.count(), 1)
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, User.Role.AUTHOR)
        failed_log = AuthorApprovalLog.objects.get(
            author_request=author_request)
        self.assertEqual(failed_log.status, AuthorApprovalLog.Status.FAILED)
        self.assertEqual(failed_log.last_step,
                         AuthorApprovalLog.Step.INSTITUTIONS)
        self.assertIn("insert failed", failed_log.error_message)

        response = self.approve(author_request)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Author.objects.count(), 1)
        self.assertEqual(Institution.objects.count(), 1)
        self.assertEqual(Article.objects.count(), 2)
        self.assertEqual(AuthorArticle.objects.count(), 2)
        last = author_request.articles.order_by("-id").first().article
        evidence.refresh_from_db()
        self.assertEqual(evidence.owner, ContentRef.for_instance(last))
        self.assertEqual(AuthorApprovalLog.objects.filter(
            author_request=author_request).count(), 2)

    @override_settings(AUTHOR_REQUESTS=STEPWISE)
    def test_stalled_approvals_command_lists_and_retries(self):
        author_request = self.submit_ok(articles=[{"title": "On Analysis"}])
        with patch("api.review.engine.build_article", side_effect=DatabaseError("insert failed")):
            self.approve(author_request)

        out = StringIO()
        call_command("stalled_approvals", stdout=out)
        self.assertIn(str(author_request.pk), out.getvalue())
        self.assertIn("failed_at=articles", out.getvalue())

        out = StringIO()
        call_command("stalled_approvals", "--retry",
                     "--reviewer", self.admin.email, stdout=out)
        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.APPROVED)
        self.assertEqual(Article.objects.count(), 1)

        out = StringIO()
        call_command("stalled_approvals", stdout=out)
        self.assertIn("No stalled author request approvals.", out.getvalue())


class AuthorRequestRejectionTests(AuthorRequestTestCase):
    def test_rejection_requires_reason(self):
        author_request = self.submit_ok()
        response = self.reject(author_request, admin_notes="  ")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "validation_error")
        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.PENDING)

    def test_rejection_records_reason_and_notifies(self):
        author_request = self.submit_ok(articles=[{"title": "On Analysis"}])
        response = self.reject(
            author_request, admin_notes="insufficient evidence")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["data"], {
                         "request_id": str(author_request.pk)})
        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.REJECTED)
        self.assertEqual(author_request.admin_notes, "insufficient evidence")
        self.assertEqual(author_request.reviewed_by, self.admin)

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["ada@example.com"])
        self.assertIn("insufficient evidence", mail.outbox[0].body)
        self.assertFalse(Author.objects.exists())
        self.assertFalse(Article.objects.exists())
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, User.Role.USER)

    def test_rejection_reason_alias_is_accepted(self):
        author_request = self.submit_ok()
        response = self.reject(
            author_request, rejection_reason="Missing publications")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        author_request.refresh_from_db()
        self.assertEqual(author_request.admin_notes, "Missing publications")

    def test_second_rejection_is_not_found(self):
        author_request = self.submit_ok()
        self.reject(author_request, admin_notes="insufficient evidence")
        response = self.reject(author_request, admin_notes="again")

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["error"], "not_found")

    def test_rejection_email_failure_is_swallowed(self):
        author_request = self.submit_ok()
        with patch(
            "api.review.engine.send_author_rejection_email",
            side_effect=SMTPException("mail server down"),
        ):
            response = self.reject(author_request, admin_notes="No evidence")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        author_request.refresh_from_db()
        self.assertEqual(author_request.status, AuthorRequest.Status.REJECTED)

    def test_rejected_request_cannot_be_approved(self):
        author_request = self.submit_ok()
        self.reject(author_request, admin_notes="No evidence")

        response = self.approve(author_request)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(Author.objects.exists())
