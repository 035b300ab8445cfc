"""
Integration tests for login and the forced password reset of invited users.
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from gamedeals.auth import PasswordManager

LOGIN = "/api/v1/auth/login"


@pytest.mark.integration
class TestInitialAdminLogin:
    """The initial admin is created with a password that must be reset."""

    def test_must_reset_first(self, client: TestClient, admin_user) -> None:
        """The right password without a new one asks for a reset."""
        response = client.post(LOGIN, json={"username": "admin", "password": "admin"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error_code"] == "must_reset_password"

    def test_new_password_must_differ(self, client: TestClient, admin_user) -> None:
        """Reusing the old password is refused."""
        response = client.post(LOGIN, json={"username": "admin", "password": "admin", "new_password": "admin"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "old_password_not_allowed"

    def test_new_password_requirements(self, client: TestClient, admin_user) -> None:
        """Weak new passwords are refused."""
        response = client.post(LOGIN, json={"username": "admin", "password": "admin", "new_password": "short"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "not_meet_password_requirements"

    def test_reset_then_login(self, client: TestClient, admin_user) -> None:
        """After a reset the new password logs in and the token authenticates."""
        reset = client.post(
            LOGIN, json={"username": "admin", "password": "admin", "new_password": "bargain-hunter-2026"}
        )
        assert reset.status_code == status.HTTP_200_OK

        again = client.post(LOGIN, json={"username": "admin", "password": "bargain-hunter-2026"})
        assert again.status_code == status.HTTP_200_OK

        token = again.json()["auth_token"]
        response = client.post(
            "/api/v1/game", json={"name": "Celeste"}, headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == status.HTTP_200_OK

    def test_old_password_stops_working(self, client: TestClient, admin_user) -> None:
        """The invite password is gone after the reset."""
        client.post(LOGIN, json={"username": "admin", "password": "admin", "new_password": "bargain-hunter-2026"})

        response = client.post(LOGIN, json={"username": "admin", "password": "admin"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "unauthorized."}

    def test_missing_fields(self, client: TestClient) -> None:
        """Bodies without credentials are a 400."""
        response = client.post(LOGIN, json={"username": "admin"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"].startswith("Failed to parse request body")


@pytest.mark.integration
class TestRelogin:
    """Logging in again while holding a token."""

    def test_login_with_valid_token(self, client: TestClient, make_user, auth_headers) -> None:
        """A plain user still holding a valid token may log in again."""
        user = make_user("player", password_hash=PasswordManager.hash_password("cheap-games-every-day"))

        response = client.post(
            LOGIN,
            json={"username": "player", "password": "cheap-games-every-day"},
            headers=auth_headers(user.id),
        )

        assert response.status_code == status.HTTP_200_OK
        assert "auth_token" in response.json()
