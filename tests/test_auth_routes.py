from conftest import ADMIN_EMAIL, CUSTOMER_EMAIL, CUSTOMER_PASSWORD, login
from docportal_auth.services import UserService
from docportal_models.audit import AuditLog


def _register(client, **overrides):
    payload = {"name": "Bob", "email": "bob@example.com", "password": "bob-secret"}
    payload.update(overrides)
    return client.post("/register", json=payload)


def test_register_creates_customer(app, client):
    response = _register(client, mobile="+15550100")

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "message": "Registration successful!"}
    with app.app_context():
        user = UserService.get_by_email("bob@example.com")
        assert user.role == "customer"
        assert user.mobile == "+15550100"
        assert user.password_hash != "bob-secret"
        assert user.verify_password("bob-secret")


def test_register_grants_admin_to_allow_listed_email(app, client):
    assert _register(client, email=ADMIN_EMAIL).status_code == 200
    with app.app_context():
        assert UserService.get_by_email(ADMIN_EMAIL).role == "admin"


def test_register_grants_admin_to_keyword_name(app, client):
    assert _register(client, name="Portal Admin", email="ops@example.com").status_code == 200
    with app.app_context():
        assert UserService.get_by_email("ops@example.com").is_admin


def test_register_rejects_duplicates(client):
    assert _register(client).status_code == 200

    duplicate = _register(client, email="BOB@example.com")

    assert duplicate.status_code == 409
    assert duplicate.get_json()["message"] == "Email already registered"


def test_register_validates_input(client):
    missing = _register(client, name="")
    bad_email = _register(client, email="not-an-email")
    short = _register(client, password="abc")

    assert missing.status_code == 400
    assert missing.get_json()["message"] == "Name, email and password required"
    assert bad_email.status_code == 400
    assert bad_email.get_json()["message"] == "Valid email required"
    assert short.status_code == 400
    assert short.get_json()["message"] == "Password must be at least 6 characters"


def test_login_and_session_lifecycle(client, customer):
    assert client.get("/api/session").get_json() == {"loggedIn": False}

    response = login(client, CUSTOMER_EMAIL, CUSTOMER_PASSWORD)
    assert response.status_code == 200
    assert response.get_json() == {
        "success": True,
        "message": "Login successful",
        "role": "customer",
        "name": "Alice",
    }

    state = client.get("/api/session").get_json()
    assert state["loggedIn"] is True
    assert state["user"]["email"] == CUSTOMER_EMAIL
    assert state["user"]["role"] == "customer"

    logout = client.post("/logout")
    assert logout.get_json()["message"] == "Logged out successfully"
    assert client.get("/api/session").get_json() == {"loggedIn": False}


def test_login_rejects_bad_credentials(app, client, customer):
    wrong = login(client, CUSTOMER_EMAIL, "not-the-password")
    unknown = login(client, "ghost@example.com", "whatever")
    missing = client.post("/login", json={"email": CUSTOMER_EMAIL})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.get_json()["message"] == "Invalid email or password"
    assert missing.status_code == 400
    assert missing.get_json()["message"] == "Email and password required"
    with app.app_context():
        assert AuditLog.query.filter_by(action="login_failed").count() == 2


def test_login_accepts_form_posts(client, customer):
    response = client.post("/login", data={"email": CUSTOMER_EMAIL, "password": CUSTOMER_PASSWORD})

    assert response.status_code == 200


def test_csrf_token_endpoint(client):
    body = client.get("/api/csrf-token").get_json()

    assert body["csrfToken"]


def test_admin_api_as_customer_is_forbidden(customer_client):
    response = customer_client.post("/clear-info")

    assert response.status_code == 403
    assert response.get_json()["message"] == "Admin access required"


def test_admin_api_without_session_is_unauthenticated(client):
    response = client.post("/clear-info")

    assert response.status_code == 401
    assert response.get_json()["code"] == "NOT_AUTHENTICATED"


def test_protected_page_redirects_to_login(client):
    response = client.get("/dashboard.html")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/login.html")


def test_admin_page_requires_admin_role(customer_client, admin_client):
    assert customer_client.get("/admin-info.html").status_code == 403
    assert admin_client.get("/admin-info.html").status_code == 200


def test_public_pages_are_served(client):
    for path in ("/", "/login.html", "/register.html", "/regester.html", "/forgot-password.html"):
        response = client.get(path)
        assert response.status_code == 200, path
        assert response.mimetype == "text/html"


def test_protected_pages_for_signed_in_users(customer_client):
    for path in ("/dashboard.html", "/upload.html", "/info.html"):
        assert customer_client.get(path).status_code == 200, path


def test_unknown_route_is_json_404(client):
    response = client.get("/missing.html")

    assert response.status_code == 404
    assert response.get_json()["success"] is False
