from __future__ import annotations

import logging
from typing import Iterable, TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.template.loader import render_to_string

if TYPE_CHECKING:
    from .models import AuthorRequest

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_REQUEST_SETTINGS = {
    "TRANSACTIONAL_APPROVAL": True,
    "LOGIN_PATH": "login",
    "ADMIN_REVIEW_PATH": "admin/author-requests",
}


def author_request_setting(name: str):
    configured = getattr(settings, "AUTHOR_REQUESTS", None) or {}
    return configured.get(name, DEFAULT_AUTHOR_REQUEST_SETTINGS[name])


def build_frontend_url(path: str) -> str:
    base_url = getattr(settings, "FRONTEND_BASE_URL", "http://localhost:4200")
    if path.startswith("/"):
        path = path[1:]
    return f"{base_url.rstrip('/')}/{path}"


def _from_email() -> str:
    return getattr(settings, "DEFAULT_FROM_EMAIL", "no-reply@scholarhub.local")


def _send(template: str, subject: str, recipients: list[str], context: dict) -> None:
    message = render_to_string(f"emails/{template}.txt", context)
    html_message = render_to_string(f"emails/{template}.html", context)
    send_mail(subject, message, _from_email(),
              recipients, html_message=html_message)


def send_author_approval_email(email: str, first_name: str, login_url: str) -> None:
    _send(
        "author_approved",
        "Author Request Approved",
        [email],
        {"first_name": first_name, "login_url": login_url},
    )


def send_author_rejection_email(email: str, first_name: str, reason: str) -> None:
    _send(
        "author_rejected",
        "Author Application Rejected",
        [email],
        {"first_name": first_name, "reason": reason},
    )


def send_admin_author_request_notification(
    admin_emails: Iterable[str],
    author_request: "AuthorRequest",
    url: str,
) -> None:
    recipients = sorted({email for email in admin_emails if email})
    if not recipients:
        return
    _send(
        "author_request_submitted",
        "New Author Request",
        recipients,
        {"author_request": author_request, "request_url": url},
    )


def notify_admins_of_author_request(author_request: "AuthorRequest") -> None:
    """Broadcast a new submission to every active admin; failures are only logged."""
    User = get_user_model()
    try:
        admin_emails = User.objects.filter(
            role=User.Role.ADMIN, is_active=True
        ).values_list("email", flat=True)
        review_path = author_request_setting("ADMIN_REVIEW_PATH").strip("/")
        send_admin_author_request_notification(
            list(admin_emails),
            author_request,
            build_frontend_url(f"{review_path}/{author_request.pk}"),
        )
    except Exception:
        logger.exception(
            "Failed to notify admins about author request %s", author_request.pk)
