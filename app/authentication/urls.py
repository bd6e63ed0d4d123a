"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/token/            - Obtain JWT access/refresh pair (email + password)
    /api/v1/auth/token/refresh/    - Exchange a refresh token for a new access token
    /api/v1/auth/me/               - Current user's account

The access token is also what websocket clients pass as ?token=<jwt>.
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.views import CurrentUserView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("me/", CurrentUserView.as_view(), name="me"),
]
