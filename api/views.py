from __future__ import annotations

from rest_framework import filters, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .exceptions import NotFoundError
from .models import AuthorRequest, File
from .pagination import ClientPageNumberPagination
from .permissions import IsAdminRole, require_owner_or_admin
from .responses import envelope
from .review import approve_author_request, reject_author_request
from .serializers import (
    AuthorRequestDecisionSerializer,
    AuthorRequestSerializer,
    AuthorRequestUpdateSerializer,
    AuthorRequestWriteSerializer,
    EmailTokenObtainPairSerializer,
    WORK_ITEM_SERIALIZERS,
)


UUID_PATTERN = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
WORK_ITEM_PATTERN = "articles|journals|books|institutions"


class EmailTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailTokenObtainPairSerializer


class UserTokenRefreshView(TokenRefreshView):
    pass


class SortOrderingFilter(filters.OrderingFilter):
    ordering_param = "sort"


class AuthorRequestViewSet(viewsets.ModelViewSet):
    queryset = AuthorRequest.objects.select_related("user", "reviewed_by").prefetch_related(
        "articles",
        "journals",
        "books",
        "institutions",
    )
    serializer_class = AuthorRequestSerializer
    permission_classes = (permissions.IsAuthenticated,)
    lookup_value_regex = UUID_PATTERN
    pagination_class = ClientPageNumberPagination
    filter_backends = (filters.SearchFilter, SortOrderingFilter)
    search_fields = (
        "first_name",
        "last_name",
        "email",
        "reason_for_request",
        "user__email",
        "user__username",
    )
    ordering_fields = ("created_at", "updated_at", "last_name", "status")
    ordering = ("-created_at",)

    def get_permissions(self):
        if self.action in {"list", "approve", "reject"}:
            return [permissions.IsAuthenticated(), IsAdminRole()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == "create":
            return AuthorRequestWriteSerializer
        if self.action in {"update", "partial_update"}:
            return AuthorRequestUpdateSerializer
        if self.action in {"approve", "reject"}:
            return AuthorRequestDecisionSerializer
        return AuthorRequestSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == "list":
            status_filter = (self.request.query_params.get(
                "status") or "").strip().lower()
            if status_filter:
                if status_filter not in AuthorRequest.Status.values:
                    raise ValidationError(
                        {"status": f"Unknown status '{status_filter}'."})
                queryset = queryset.filter(status=status_filter)
        return queryset

    def _read(self, author_request: AuthorRequest) -> dict:
        fresh = self.get_queryset().get(pk=author_request.pk)
        return AuthorRequestSerializer(fresh, context=self.get_serializer_context()).data

    def _get_editable_request(self) -> AuthorRequest:
        """Pending request owned by the caller, or 404 for anything else."""
        lookup = self.kwargs[self.lookup_url_kwarg or self.lookup_field]
        author_request = AuthorRequest.objects.filter(
            pk=lookup,
            user=self.request.user,
            status=AuthorRequest.Status.PENDING,
        ).first()
        if author_request is None:
            raise NotFoundError("Pending author request not found.")
        return author_request

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    def retrieve(self, request, *args, **kwargs):
        lookup = kwargs[self.lookup_url_kwarg or self.lookup_field]
        author_request = self.get_queryset().filter(pk=lookup).first()
        if author_request is None:
            raise NotFoundError("Author request not found.")
        require_owner_or_admin(request.user, author_request.user_id)
        serializer = self.get_serializer(author_request)
        return envelope(serializer.data)

    @action(detail=False, methods=["get"], url_path="me")
    def me(self, request, *args, **kwargs):
        author_request = self.get_queryset().filter(
            user=request.user).order_by("-created_at").first()
        data = None
        if author_request is not None:
            data = AuthorRequestSerializer(
                author_request, context=self.get_serializer_context()).data
        return envelope(data)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        author_request = serializer.save()
        return envelope(
            self._read(author_request),
            message="Author request submitted successfully.",
            status_code=status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        kwargs.pop("partial", None)
        author_request = self._get_editable_request()
        serializer = self.get_serializer(
            author_request, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return envelope(
            self._read(author_request),
            message="Author request updated successfully.",
        )

    def partial_update(self, request, *args, **kwargs):
        kwargs["partial"] = True
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        author_request = self._get_editable_request()
        File.objects.attached_to(author_request.content_ref).retarget(None)
        author_request.delete()
        return envelope(message="Author request deleted successfully.")

    @action(
        detail=True,
        methods=["post"],
        url_path=rf"(?P<kind>{WORK_ITEM_PATTERN})",
        url_name="work-items",
    )
    def add_work_item(self, request, kind=None, *args, **kwargs):
        author_request = self._get_editable_request()
        serializer_class = WORK_ITEM_SERIALIZERS[kind]
        serializer = serializer_class(
            data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        serializer.save(author_request=author_request)
        return envelope(
            serializer.data,
            message="Work item added successfully.",
            status_code=status.HTTP_201_CREATED,
        )

    @action(
        detail=True,
        methods=["delete"],
        url_path=rf"(?P<kind>{WORK_ITEM_PATTERN})/(?P<item_id>[0-9]+)",
        url_name="work-item-detail",
    )
    def remove_work_item(self, request, kind=None, item_id=None, *args, **kwargs):
        author_request = self._get_editable_request()
        deleted, _ = getattr(author_request, kind).filter(pk=item_id).delete()
        if not deleted:
            raise NotFoundError("Work item not found.")
        return envelope(message="Work item removed successfully.")

    @action(detail=True, methods=["put"], url_path="approve")
    def approve(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = approve_author_request(
            kwargs[self.lookup_url_kwarg or self.lookup_field],
            request.user,
            admin_notes=serializer.validated_data.get("admin_notes"),
        )
        return envelope(result.as_dict(), message="Author request approved successfully.")

    @action(detail=True, methods=["put"], url_path="reject")
    def reject(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        author_request = reject_author_request(
            kwargs[self.lookup_url_kwarg or self.lookup_field],
            request.user,
            serializer.notes,
        )
        return envelope(
            {"request_id": str(author_request.pk)},
            message="Author request rejected successfully.",
        )
