"""
Root URL configuration for the ledger service.

API routes live under ``/api/``; JWT token endpoints let the external auth
collaborator exchange credentials for bearer tokens.
"""

from django.contrib import admin
from django.urls import include, path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/", include("ledger.urls")),
]
