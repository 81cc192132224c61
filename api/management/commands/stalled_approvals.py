from __future__ import annotations

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db.models import OuterRef, Subquery
from rest_framework.exceptions import APIException

from api.models import AuthorApprovalLog, AuthorRequest
from api.review import approve_author_request
from api.review.engine import STEP_ORDER


def next_step(last_step: str | None) -> str:
    if not last_step:
        return STEP_ORDER[0]
    try:
        index = STEP_ORDER.index(last_step)
    except ValueError:
        return STEP_ORDER[0]
    return STEP_ORDER[min(index + 1, len(STEP_ORDER) - 1)]


def stalled_requests():
    """Pending requests whose most recent approval attempt failed."""
    latest = AuthorApprovalLog.objects.filter(
        author_request=OuterRef("pk")
    ).order_by("-started_at", "-id")
    return (
        AuthorRequest.objects.filter(status=AuthorRequest.Status.PENDING)
        .annotate(
            latest_status=Subquery(latest.values("status")[:1]),
            latest_step=Subquery(latest.values("last_step")[:1]),
            latest_error=Subquery(latest.values("error_message")[:1]),
        )
        .filter(latest_status=AuthorApprovalLog.Status.FAILED)
        .select_related("user")
        .order_by("created_at")
    )


class Command(BaseCommand):
    help = "List pending author requests whose last approval attempt failed, optionally retrying them."

    def add_arguments(self, parser):
        parser.add_argument(
            "--retry",
            action="store_true",
            help="Replay the approval for every stalled request.",
        )
        parser.add_argument(
            "--reviewer",
            help="Email of the admin account the retried approvals are recorded against.",
        )

    def handle(self, *args, **options):
        retry = options.get("retry")
        reviewer = None
        if retry:
            reviewer = self._resolve_reviewer(options.get("reviewer"))

        requests = list(stalled_requests())
        if not requests:
            self.stdout.write("No stalled author request approvals.")
            return

        failures = 0
        for author_request in requests:
            self.stdout.write(
                f"{author_request.pk} {author_request.first_name} {author_request.last_name} "
                f"<{author_request.user.email}> completed={author_request.latest_step or '-'} "
                f"failed_at={next_step(author_request.latest_step)}: {author_request.latest_error}"
            )
            if not retry:
                continue
            try:
                result = approve_author_request(author_request.pk, reviewer)
            except APIException as exc:
                failures += 1
                self.stderr.write(
                    self.style.ERROR(f"{author_request.pk}: {exc.detail}")
                )
                continue
            self.stdout.write(
                self.style.SUCCESS(
                    f"{author_request.pk}: approved (author {result.author_id})")
            )

        if retry:
            summary = f"Retried {len(requests)} request(s), {failures} failed."
            if failures:
                self.stderr.write(self.style.WARNING(summary))
            else:
                self.stdout.write(self.style.SUCCESS(summary))

    def _resolve_reviewer(self, email: str | None):
        if not email:
            raise CommandError("--reviewer is required with --retry.")
        User = get_user_model()
        reviewer = User.objects.filter(email__iexact=email).first()
        if reviewer is None:
            raise CommandError(f"User '{email}' was not found.")
        if not reviewer.is_admin:
            raise CommandError(f"User '{email}' is not an admin.")
        return reviewer
