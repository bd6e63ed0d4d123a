"""
Tests for authentication API endpoints.

Covers JWT token issuance and the current-user endpoint.
"""

import pytest
from rest_framework import status
from rest_framework.test import APIClient

from authentication.tests.factories import UserFactory

TOKEN_URL = "/api/v1/auth/token/"
REFRESH_URL = "/api/v1/auth/token/refresh/"
ME_URL = "/api/v1/auth/me/"


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user(db):
    return UserFactory(email="ada@campus.example.edu", username="ada", password="TestPass123!")


class TestTokenObtain:
    """Tests for POST /auth/token/."""

    def test_valid_credentials_return_token_pair(self, api_client, user):
        response = api_client.post(
            TOKEN_URL,
            {"email": "ada@campus.example.edu", "password": "TestPass123!"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data
        assert "refresh" in response.data

    def test_wrong_password(self, api_client, user):
        response = api_client.post(
            TOKEN_URL,
            {"email": "ada@campus.example.edu", "password": "wrong"},
            format="json",
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_inactive_user(self, api_client, db):
        UserFactory(email="gone@campus.example.edu", is_active=False)

        response = api_client.post(
            TOKEN_URL,
            {"email": "gone@campus.example.edu", "password": "TestPass123!"},
            format="json",
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_refresh(self, api_client, user):
        tokens = api_client.post(
            TOKEN_URL,
            {"email": "ada@campus.example.edu", "password": "TestPass123!"},
            format="json",
        ).data

        response = api_client.post(REFRESH_URL, {"refresh": tokens["refresh"]}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert "access" in response.data


class TestCurrentUser:
    """Tests for GET /auth/me/."""

    def test_returns_own_account(self, api_client, user):
        api_client.force_authenticate(user=user)

        response = api_client.get(ME_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == user.id
        assert response.data["email"] == "ada@campus.example.edu"
        assert response.data["username"] == "ada"

    def test_bearer_token(self, api_client, user):
        access = api_client.post(
            TOKEN_URL,
            {"email": "ada@campus.example.edu", "password": "TestPass123!"},
            format="json",
        ).data["access"]
        api_client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")

        response = api_client.get(ME_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == user.id

    def test_requires_authentication(self, api_client, db):
        response = api_client.get(ME_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
