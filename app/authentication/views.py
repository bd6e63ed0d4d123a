"""
Views for authentication endpoints.

Token issuance is handled by djangorestframework-simplejwt views wired in
urls.py; this module only adds the current-user endpoint.
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import CurrentUserSerializer


class CurrentUserView(APIView):
    """
    API view returning the signed-in user's account.

    GET: Retrieve current user

    URL: /api/v1/auth/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get current user",
        description="Account details of the user owning the access token.",
        tags=["Auth"],
        responses={200: CurrentUserSerializer},
    )
    def get(self, request):
        """Return the current user's account."""
        serializer = CurrentUserSerializer(request.user)
        return Response(serializer.data)
