from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    AuthorRequestViewSet,
    EmailTokenObtainPairView,
    UserTokenRefreshView,
)

router = DefaultRouter()
router.register(r"author-requests", AuthorRequestViewSet,
                basename="author-request")

urlpatterns = [
    path("auth/token/", EmailTokenObtainPairView.as_view(), name="auth-token"),
    path("auth/token/refresh/", UserTokenRefreshView.as_view(),
         name="auth-token-refresh"),
    path("", include(router.urls)),
]
