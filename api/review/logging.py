from __future__ import annotations

from dataclasses import dataclass

from django.utils import timezone

from api.models import AuthorApprovalLog, AuthorRequest


@dataclass
class ApprovalLogContext:
    """State shared with the review engine while an approval attempt is active."""

    author_request: AuthorRequest
    entry: AuthorApprovalLog

    def mark_step(self, step: str) -> None:
        self.entry.mark_step(step)

    def mark_success(self) -> None:
        self.entry.mark_success()

    def mark_failure(self, reason: str) -> None:
        self.entry.mark_failure(reason)

    @property
    def is_closed(self) -> bool:
        return self.entry.status in {
            AuthorApprovalLog.Status.SUCCESS,
            AuthorApprovalLog.Status.FAILED,
        }


class ApprovalLogWriter:
    """Helper responsible for persisting approval attempts and their progress."""

    def __init__(self, context: ApprovalLogContext):
        self._context = context

    @classmethod
    def start(cls, *, author_request: AuthorRequest, reviewer=None, mode: str | None = None) -> "ApprovalLogWriter":
        entry = AuthorApprovalLog.objects.create(
            author_request=author_request,
            reviewer=reviewer,
            mode=mode or AuthorApprovalLog.Mode.TRANSACTIONAL,
            started_at=timezone.now(),
            status=AuthorApprovalLog.Status.RUNNING,
        )
        return cls(ApprovalLogContext(author_request=author_request, entry=entry))

    @property
    def entry(self) -> AuthorApprovalLog:
        return self._context.entry

    def mark_step(self, step: str) -> None:
        if not self._context.is_closed:
            self._context.mark_step(step)

    def record_fallback(self) -> None:
        # The fast path rolled back, so nothing it recorded survived.
        entry = self.entry
        entry.mode = AuthorApprovalLog.Mode.STEPWISE
        entry.last_step = ""
        entry.save(update_fields=["mode", "last_step"])

    def mark_success(self) -> None:
        if not self._context.is_closed:
            self._context.mark_success()

    def mark_failure(self, reason: str) -> None:
        if not self._context.is_closed:
            self._context.mark_failure(reason)

    def ensure_closed(self) -> None:
        if not self._context.is_closed:
            self._context.mark_failure("Approval attempt ended without a result.")
