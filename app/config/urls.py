"""
URL configuration for the campus messaging backend.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface (moderation)
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - Authentication endpoints
        token/                     - Obtain JWT access/refresh pair
        token/refresh/             - Refresh access token
        me/                        - Current user profile
    /api/v1/chat/                  - Chat endpoints
        conversations/             - Conversation list/create
        conversations/{id}/        - Conversation detail/update/delete
        conversations/{id}/read/   - Mark conversation as read
        conversations/{id}/join/   - Join a public group or club
        conversations/{id}/transfer-admin/ - Hand the admin role to another member
        conversations/{id}/participants/ - Participant list/add
        conversations/{id}/participants/{user_id}/ - Moderator flag/remove
        conversations/{id}/messages/ - Message history/send
        conversations/{id}/messages/search/ - Search text messages
        conversations/{id}/messages/{pk}/ - Message delete
        conversations/{id}/messages/{pk}/read/ - Mark one message as read

Real-time traffic is served by the ASGI websocket router (see config.asgi).
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("auth/", include("authentication.urls")),
    path("chat/", include("chat.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Campus Chat Admin"
admin.site.site_title = "Campus Chat Moderation"
admin.site.index_title = "Conversations and members"
