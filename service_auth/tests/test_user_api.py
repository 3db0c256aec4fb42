"""
HTTP tests for profile and admin user management.
"""


class TestProfile:
    """Test cases for the caller's own account."""

    def test_get_profile(self, client, register, auth_headers):
        body = register("alice")

        response = client.get("/api/users/profile", headers=auth_headers(body))

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "alice"

    def test_update_profile_email_resets_verification(self, client, register, auth_headers):
        body = register("alice")

        response = client.put(
            "/api/users/profile",
            headers=auth_headers(body),
            json={"first_name": "  Alicia ", "email": "NEW@example.com"},
        )

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["first_name"] == "Alicia"
        assert user["email"] == "new@example.com"
        assert user["is_email_verified"] is False

    def test_update_profile_email_taken(self, client, register, auth_headers):
        register("bob")
        body = register("alice")

        response = client.put("/api/users/profile", headers=auth_headers(body), json={"email": "bob@example.com"})

        assert response.status_code == 409

    def test_change_password(self, client, register, auth_headers):
        body = register("alice")

        response = client.put(
            "/api/users/change-password",
            headers=auth_headers(body),
            json={"current_password": "Secret123", "new_password": "Better456"},
        )

        assert response.status_code == 200
        old = client.post("/api/auth/login", json={"username": "alice", "password": "Secret123"})
        new = client.post("/api/auth/login", json={"username": "alice", "password": "Better456"})
        assert old.status_code == 401
        assert new.status_code == 200

    def test_change_password_wrong_current(self, client, register, auth_headers):
        body = register("alice")

        response = client.put(
            "/api/users/change-password",
            headers=auth_headers(body),
            json={"current_password": "Nope1234", "new_password": "Better456"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Current password is incorrect"

    def test_change_password_must_differ(self, client, register, auth_headers):
        body = register("alice")

        response = client.put(
            "/api/users/change-password",
            headers=auth_headers(body),
            json={"current_password": "Secret123", "new_password": "Secret123"},
        )

        assert response.status_code == 400

    def test_delete_account_deactivates(self, client, register, auth_headers):
        body = register("alice")

        response = client.delete("/api/users/account", headers=auth_headers(body))

        assert response.status_code == 200
        me = client.get("/api/auth/me", headers=auth_headers(body))
        assert me.status_code == 401
        assert me.json()["message"] == "User not found or inactive"


class TestAdmin:
    """Test cases for admin-only user management."""

    def test_non_admin_is_forbidden(self, client, register, auth_headers):
        body = register("alice")

        response = client.get("/api/users", headers=auth_headers(body))

        assert response.status_code == 403

    def test_list_users_with_filters(self, client, register, auth_headers):
        admin = register("root")
        register("alice")
        register("bob", first_name="Robert")
        register("carl", headers=auth_headers(admin), role="director")

        everyone = client.get("/api/users", headers=auth_headers(admin)).json()
        directors = client.get("/api/users", params={"role": "director"}, headers=auth_headers(admin)).json()
        search = client.get("/api/users", params={"search": "robert"}, headers=auth_headers(admin)).json()
        paged = client.get("/api/users", params={"limit": 3, "page": 2}, headers=auth_headers(admin)).json()

        assert everyone["pagination"] == {"page": 1, "limit": 10, "total": 4, "pages": 1}
        assert [u["username"] for u in directors["users"]] == ["carl"]
        assert [u["username"] for u in search["users"]] == ["bob"]
        assert len(paged["users"]) == 1
        assert paged["pagination"]["pages"] == 2

    def test_get_user(self, client, register, auth_headers):
        admin = register("root")
        alice = register("alice")

        found = client.get(f"/api/users/{alice['user']['id']}", headers=auth_headers(admin))
        missing = client.get("/api/users/does-not-exist", headers=auth_headers(admin))

        assert found.status_code == 200
        assert found.json()["user"]["username"] == "alice"
        assert missing.status_code == 404

    def test_update_role(self, client, register, auth_headers):
        admin = register("root")
        alice = register("alice")

        response = client.put(
            f"/api/users/{alice['user']['id']}/role",
            headers=auth_headers(admin),
            json={"role": "director"},
        )

        assert response.status_code == 200
        assert response.json()["user"]["role"] == "director"

    def test_admin_cannot_demote_self(self, client, register, auth_headers):
        admin = register("root")

        response = client.put(
            f"/api/users/{admin['user']['id']}/role",
            headers=auth_headers(admin),
            json={"role": "user"},
        )

        assert response.status_code == 400

    def test_deactivate_user_revokes_sessions(self, client, register, auth_headers):
        admin = register("root")
        alice = register("alice")

        response = client.put(
            f"/api/users/{alice['user']['id']}/status",
            headers=auth_headers(admin),
            json={"is_active": False},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "User deactivated successfully"
        client.cookies.clear()
        refreshed = client.post("/api/auth/refresh", json={"refresh_token": alice["refresh_token"]})
        assert refreshed.status_code == 401

    def test_status_requires_boolean(self, client, register, auth_headers):
        admin = register("root")
        alice = register("alice")

        response = client.put(
            f"/api/users/{alice['user']['id']}/status",
            headers=auth_headers(admin),
            json={"is_active": "no"},
        )

        assert response.status_code == 400

    def test_admin_cannot_deactivate_self(self, client, register, auth_headers):
        admin = register("root")

        response = client.put(
            f"/api/users/{admin['user']['id']}/status",
            headers=auth_headers(admin),
            json={"is_active": False},
        )

        assert response.status_code == 400
