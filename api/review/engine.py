"""Approval and rejection of author requests.

Approving a request promotes the submitter to ``author`` and turns every
claimed work into a canonical entity. The engine first tries to do all of
it inside one database transaction. When that fails at the database layer
it replays the same steps without a shared transaction; each claimed item
then commits on its own and records the entity it produced, so a retried
approval skips whatever already exists.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from django.contrib.auth import get_user_model
from django.db import DatabaseError, models, transaction
from django.utils import timezone

from api.exceptions import DependencyError, NotFoundError, ValidationError
from api.models import (
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
    RequestedBook,
    RequestedInstitution,
    RequestedJournal,
)
from api.permissions import require_admin
from api.utils import (
    author_request_setting,
    build_frontend_url,
    send_author_approval_email,
    send_author_rejection_email,
)

from .logging import ApprovalLogWriter

logger = logging.getLogger(__name__)

User = get_user_model()
Step = AuthorApprovalLog.Step

STEP_ORDER: tuple[str, ...] = tuple(Step.values)


@dataclass(frozen=True)
class ApprovalResult:
    request_id: uuid.UUID
    author_id: uuid.UUID
    user_id: uuid.UUID

    def as_dict(self) -> dict[str, str]:
        return {
            "request_id": str(self.request_id),
            "author_id": str(self.author_id),
            "user_id": str(self.user_id),
        }


class ApprovalStepFailed(Exception):
    def __init__(self, step: str, error: Exception):
        step = str(step)
        super().__init__(f"{step}: {error}")
        self.step = step
        self.error = error


def upsert_author(author_request: AuthorRequest, reviewer) -> Author:
    user = author_request.user
    author, _ = Author.objects.update_or_create(
        user=user,
        defaults={
            "first_name": author_request.first_name,
            "last_name": author_request.last_name,
            "academic_title": author_request.academic_title,
            "email": author_request.email or user.email,
            "bio": author_request.bio,
            "updated_by": reviewer,
        },
    )
    return author


def promote_user_role(author_request: AuthorRequest) -> None:
    User.objects.filter(pk=author_request.user_id).exclude(
        role=User.Role.ADMIN
    ).update(role=User.Role.AUTHOR, updated_at=timezone.now())


def resolve_institution(claimed: RequestedInstitution, reviewer) -> Institution:
    existing = Institution.objects.filter(
        name=claimed.name,
        country=claimed.country,
        city=claimed.city,
    ).order_by("created_at").first()
    if existing is not None:
        return existing
    return Institution.objects.create(
        name=claimed.name,
        type=claimed.type,
        country=claimed.country,
        city=claimed.city,
        updated_by=reviewer,
    )


def build_article(claimed: RequestedArticle, author_request: AuthorRequest, reviewer, institution: Institution | None) -> Article:
    return Article.objects.create(
        title=claimed.title,
        abstract=claimed.abstract,
        content=claimed.content,
        publish_date=claimed.publish_date,
        language=claimed.language,
        subject_classification=claimed.subject_classification,
        institution=institution,
        created_by=author_request.user,
        updated_by=reviewer,
    )


def build_journal(claimed: RequestedJournal, author_request: AuthorRequest, reviewer) -> Journal:
    return Journal.objects.create(
        name=claimed.name,
        type=claimed.type,
        issn=claimed.issn,
        language=claimed.language,
        publish_date=claimed.publish_date,
        created_by=author_request.user,
        updated_by=reviewer,
    )


def build_book(claimed: RequestedBook, author_request: AuthorRequest, reviewer) -> Book:
    return Book.objects.create(
        title=claimed.title,
        isbn=claimed.isbn,
        language=claimed.language,
        publish_date=claimed.publish_date,
        publisher=claimed.publisher,
        description=claimed.description,
        created_by=author_request.user,
        updated_by=reviewer,
    )


class ApprovalRun:
    """Runs the approval steps for one request in order, recording progress."""

    def __init__(self, author_request: AuthorRequest, reviewer, admin_notes: str | None, writer: ApprovalLogWriter):
        self.author_request = author_request
        self.reviewer = reviewer
        self.admin_notes = admin_notes
        self.writer = writer
        self.current_step: str | None = None
        self._file_refs: list[ContentRef] = []

    def run(self) -> ApprovalResult:
        author = self._step(Step.AUTHOR, upsert_author,
                            self.author_request, self.reviewer)
        self._step(Step.ROLE, promote_user_role, self.author_request)
        institution = self._step(
            Step.INSTITUTIONS, self._resolve_institutions, author)
        self._step(Step.ARTICLES, self._materialize_articles,
                   author, institution)
        self._step(Step.JOURNALS, self._materialize_journals)
        self._step(Step.BOOKS, self._materialize_books, author)
        self._step(Step.STATUS, self._mark_approved, author)
        return ApprovalResult(
            request_id=self.author_request.pk,
            author_id=author.pk,
            user_id=self.author_request.user_id,
        )

    def _step(self, step: str, func: Callable, *args):
        self.current_step = step
        try:
            result = func(*args)
        except DatabaseError as exc:
            raise ApprovalStepFailed(step, exc) from exc
        self.writer.mark_step(step)
        return result

    def _materialize(self, claimed: models.Model, link_field: str, build: Callable[[], models.Model], after: Callable[[models.Model], None] | None = None):
        """Create the canonical entity for one claimed item unless it already has one."""
        with transaction.atomic():
            locked = type(claimed).objects.select_for_update().get(pk=claimed.pk)
            entity = getattr(locked, link_field)
            if entity is None:
                entity = build()
                setattr(locked, link_field, entity)
                locked.save(update_fields=[link_field])
            if after is not None:
                after(entity)
        return entity

    def _resolve_institutions(self, author: Author) -> Institution | None:
        resolved = [
            self._materialize(
                claimed,
                "institution",
                lambda claimed=claimed: resolve_institution(
                    claimed, self.reviewer),
            )
            for claimed in self.author_request.institutions.all()
        ]
        if not resolved:
            return author.institution
        primary = resolved[0]
        if author.institution_id != primary.pk:
            Author.objects.filter(pk=author.pk).update(
                institution=primary, updated_at=timezone.now())
            author.institution = primary
        return primary

    def _load_file_refs(self) -> list[ContentRef]:
        refs = [self.author_request.content_ref]
        sources = (
            (RequestedArticle, "article_id", ContentKind.ARTICLE),
            (RequestedJournal, "journal_id", ContentKind.JOURNAL),
            (RequestedBook, "book_id", ContentKind.BOOK),
        )
        for model, column, kind in sources:
            owner_ids = model.objects.filter(
                author_request=self.author_request,
                **{f"{column}__isnull": False},
            ).values_list(column, flat=True)
            refs.extend(ContentRef(kind=kind, owner_id=owner_id)
                        for owner_id in owner_ids)
        return refs

    def _retarget_files(self, entity: models.Model) -> None:
        ref = ContentRef.for_instance(entity)
        File.objects.attached_to_any(self._file_refs).retarget(ref)
        if ref not in self._file_refs:
            self._file_refs.append(ref)

    def _materialize_articles(self, author: Author, institution: Institution | None) -> None:
        self._file_refs = self._load_file_refs()

        def link(article: Article) -> None:
            AuthorArticle.objects.get_or_create(author=author, article=article)
            self._retarget_files(article)

        for claimed in self.author_request.articles.all():
            self._materialize(
                claimed,
                "article",
                lambda claimed=claimed: build_article(
                    claimed, self.author_request, self.reviewer, institution),
                link,
            )

    def _materialize_journals(self) -> None:
        for claimed in self.author_request.journals.all():
            self._materialize(
                claimed,
                "journal",
                lambda claimed=claimed: build_journal(
                    claimed, self.author_request, self.reviewer),
                self._retarget_files,
            )

    def _materialize_books(self, author: Author) -> None:
        def link(book: Book) -> None:
            AuthorBook.objects.get_or_create(author=author, book=book)
            self._retarget_files(book)

        for claimed in self.author_request.books.all():
            self._materialize(
                claimed,
                "book",
                lambda claimed=claimed: build_book(
                    claimed, self.author_request, self.reviewer),
                link,
            )

    def _mark_approved(self, author: Author) -> None:
        notes = self.admin_notes if self.admin_notes is not None else self.author_request.admin_notes
        updated = AuthorRequest.objects.filter(
            pk=self.author_request.pk,
            status=AuthorRequest.Status.PENDING,
        ).update(
            status=AuthorRequest.Status.APPROVED,
            admin_notes=notes,
            reviewed_by=self.reviewer,
            author=author,
            updated_at=timezone.now(),
        )
        if not updated:
            raise NotFoundError(
                "Author request not found or already reviewed.")


def _pending_request(request_id, *, lock: bool = False) -> AuthorRequest:
    queryset = AuthorRequest.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=request_id, status=AuthorRequest.Status.PENDING)
    except AuthorRequest.DoesNotExist as exc:
        raise NotFoundError(
            "Author request not found or already reviewed.") from exc


def _approve_in_transaction(request_id, reviewer, admin_notes: str | None, writer: ApprovalLogWriter) -> ApprovalResult:
    with transaction.atomic():
        author_request = _pending_request(request_id, lock=True)
        return ApprovalRun(author_request, reviewer, admin_notes, writer).run()


def _approve_stepwise(request_id, reviewer, admin_notes: str | None, writer: ApprovalLogWriter) -> ApprovalResult:
    author_request = _pending_request(request_id)
    run = ApprovalRun(author_request, reviewer, admin_notes, writer)
    try:
        return run.run()
    except ApprovalStepFailed as exc:
        logger.error(
            "Approval of author request %s failed at step '%s': %s",
            request_id,
            exc.step,
            exc.error,
        )
        writer.mark_failure(str(exc))
        raise DependencyError(
            f"Approval failed at step '{exc.step}': {exc.error}") from exc


def approve_author_request(request_id, reviewer, admin_notes: str | None = None) -> ApprovalResult:
    require_admin(reviewer)
    author_request = _pending_request(request_id)
    transactional = bool(author_request_setting("TRANSACTIONAL_APPROVAL"))
    writer = ApprovalLogWriter.start(
        author_request=author_request,
        reviewer=reviewer,
        mode=AuthorApprovalLog.Mode.TRANSACTIONAL if transactional else AuthorApprovalLog.Mode.STEPWISE,
    )

    try:
        result = None
        if transactional:
            try:
                result = _approve_in_transaction(
                    request_id, reviewer, admin_notes, writer)
            except (DatabaseError, ApprovalStepFailed) as exc:
                logger.warning(
                    "Transactional approval of author request %s failed, falling back to stepwise: %s",
                    request_id,
                    exc,
                )
                writer.record_fallback()
        if result is None:
            result = _approve_stepwise(
                request_id, reviewer, admin_notes, writer)
        writer.mark_success()
    except NotFoundError as exc:
        writer.mark_failure(str(exc.detail))
        raise
    finally:
        writer.ensure_closed()

    logger.info(
        "Author request %s approved by %s (author %s)",
        result.request_id,
        reviewer.pk,
        result.author_id,
    )

    user = author_request.user
    try:
        send_author_approval_email(
            author_request.email or user.email,
            author_request.first_name,
            build_frontend_url(author_request_setting("LOGIN_PATH")),
        )
    except Exception:
        logger.exception(
            "Failed to send approval email for author request %s", result.request_id)
    return result


def reject_author_request(request_id, reviewer, admin_notes: str | None) -> AuthorRequest:
    require_admin(reviewer)
    reason = (admin_notes or "").strip()
    if not reason:
        raise ValidationError(
            {"admin_notes": ["A rejection reason is required."]})

    with transaction.atomic():
        author_request = _pending_request(request_id, lock=True)
        author_request.status = AuthorRequest.Status.REJECTED
        author_request.admin_notes = reason
        author_request.reviewed_by = reviewer
        author_request.save(
            update_fields=["status", "admin_notes", "reviewed_by", "updated_at"])

    logger.info("Author request %s rejected by %s",
                author_request.pk, reviewer.pk)

    try:
        send_author_rejection_email(
            author_request.email or author_request.user.email,
            author_request.first_name,
            reason,
        )
    except Exception:
        logger.exception(
            "Failed to send rejection email for author request %s", author_request.pk)
    return author_request
