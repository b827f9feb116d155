from inkwell.models import User


def test_register_logs_user_in(client, app_instance):
    response = client.post("/auth/register", json={"username": "  Ada ", "password": "pass"})

    assert response.status_code == 201
    assert response.get_json()["user"]["username"] == "ada"
    check = client.get("/auth/check").get_json()
    assert check["authenticated"] is True
    assert check["username"] == "ada"
    assert check["csrfToken"]


def test_register_rejects_short_password(client, app_instance):
    response = client.post("/auth/register", json={"username": "ada", "password": "abc"})

    assert response.status_code == 400
    assert "at least 4" in response.get_json()["error"]
    assert User.query.count() == 0


def test_register_requires_username(client, app_instance):
    response = client.post("/auth/register", json={"password": "secret"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Username is required"
    assert User.query.count() == 0


def test_register_duplicate_username_conflicts(client, user):
    response = client.post("/auth/register", json={"username": user.username.upper(), "password": "secret"})

    assert response.status_code == 409
    assert User.query.count() == 1


def test_login_wrong_password_is_generic(client, user):
    wrong_password = client.post("/auth/login", json={"username": user.username, "password": "nope"})
    unknown_user = client.post("/auth/login", json={"username": "nobody", "password": "nope"})

    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.get_json() == unknown_user.get_json()
    assert wrong_password.get_json()["error"] == "Invalid username or password."


def test_login_requires_fields(client, user):
    response = client.post("/auth/login", json={"username": user.username})

    assert response.status_code == 400
    assert response.get_json()["error"] == "Password is required"


def test_logout_clears_session(logged_in):
    assert logged_in.get("/auth/check").get_json()["authenticated"] is True

    response = logged_in.post("/auth/logout")

    assert response.status_code == 200
    check = logged_in.get("/auth/check").get_json()
    assert check["authenticated"] is False
    assert check["username"] is None


def test_protected_routes_return_json_401(client, app_instance):
    response = client.get("/projects")

    assert response.status_code == 401
    assert response.get_json() == {"error": "Unauthorized"}


def test_register_rejects_non_string_username(client, app_instance):
    response = client.post("/auth/register", json={"username": 12345, "password": "secret"})

    assert response.status_code == 400
    assert response.get_json() == {"error": "username must be a string"}
    assert User.query.count() == 0


def test_register_rejects_non_object_body(client, app_instance):
    response = client.post("/auth/register", json=["x"])

    assert response.status_code == 400
    assert response.get_json() == {"error": "Request body must be a JSON object"}


def test_login_rejects_non_string_fields(client, user):
    numeric_username = client.post("/auth/login", json={"username": 12345, "password": "password123"})
    listed_password = client.post("/auth/login", json={"username": user.username, "password": ["password123"]})

    assert numeric_username.status_code == 400
    assert listed_password.status_code == 400
    assert client.get("/auth/check").get_json()["authenticated"] is False
