from datetime import datetime, timedelta

from conftest import CUSTOMER_EMAIL, CUSTOMER_PASSWORD, build_config, login
from docportal_auth import otp_service
from docportal_auth.services import UserService
from docportal_ext import create_app
from docportal_ext.email import EmailDeliveryError

ISSUED_AT = datetime(2024, 1, 1, 12, 0, 0)


def _freeze(monkeypatch, moment: datetime) -> None:
    monkeypatch.setattr(otp_service, "_now", lambda: moment)


def _codes(monkeypatch, *codes: str) -> None:
    remaining = iter(codes)
    monkeypatch.setattr(otp_service, "_issue_code", lambda: next(remaining))


def _request_code(client, outbox, email: str = CUSTOMER_EMAIL) -> str:
    response = client.post("/forgot-password", json={"email": email})
    assert response.status_code == 200, response.get_json()
    return outbox[-1]["context"]["otp"]


def _user(app, email: str = CUSTOMER_EMAIL):
    with app.app_context():
        return UserService.get_by_email(email)


def test_issue_sets_expiry_and_stores_only_a_hash(app, client, customer, outbox, monkeypatch):
    _freeze(monkeypatch, ISSUED_AT)

    code = _request_code(client, outbox)

    user = _user(app)
    assert user.otp_expires_at == ISSUED_AT + timedelta(minutes=10)
    assert user.reset_otp_hash is not None
    assert user.reset_otp_hash != code
    assert len(code) == 6 and code.isdigit()


def test_issue_response_and_email(client, customer, outbox):
    response = client.post("/forgot-password", json={"email": "  Alice@Example.com "})

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "message": "OTP sent to your email"}
    assert outbox[0]["recipients"] == [CUSTOMER_EMAIL]
    assert outbox[0]["subject"].endswith("Password Reset OTP")
    assert outbox[0]["context"]["expiry_minutes"] == 10


def test_missing_email_is_invalid_input(client):
    response = client.post("/forgot-password", json={})

    assert response.status_code == 400
    assert response.get_json()["code"] == "INVALID_INPUT"


def test_unknown_email_is_reported_by_default(client, outbox):
    response = client.post("/forgot-password", json={"email": "nobody@example.com"})

    assert response.status_code == 404
    body = response.get_json()
    assert body["success"] is False
    assert body["message"] == "Email not found"
    assert outbox == []


def test_unknown_email_can_be_hidden(tmp_path, outbox):
    app = create_app(build_config(tmp_path, PASSWORD_RESET_REVEAL_UNKNOWN_EMAIL=False), create_db=True)
    with app.app_context():
        UserService.create_user("Alice", CUSTOMER_EMAIL, CUSTOMER_PASSWORD)
    client = app.test_client()

    unknown = client.post("/forgot-password", json={"email": "nobody@example.com"})
    known = client.post("/forgot-password", json={"email": CUSTOMER_EMAIL})

    assert unknown.status_code == known.status_code == 200
    assert unknown.get_json()["message"] == known.get_json()["message"]
    assert len(outbox) == 1


def test_mail_failure_reports_server_error_and_keeps_code(app, client, customer, monkeypatch):
    def _broken(**kwargs):
        raise EmailDeliveryError("SMTP delivery failed: connection refused")

    monkeypatch.setattr("docportal_auth.routes.send_email", _broken)

    response = client.post("/forgot-password", json={"email": CUSTOMER_EMAIL})

    assert response.status_code == 500
    body = response.get_json()
    assert body["message"] == "Server error"
    assert "SMTP" not in body["message"]
    assert _user(app).reset_otp_hash is not None


def test_code_fails_after_expiry_even_when_correct(client, customer, outbox, monkeypatch):
    _freeze(monkeypatch, ISSUED_AT)
    code = _request_code(client, outbox)

    _freeze(monkeypatch, ISSUED_AT + timedelta(minutes=10, seconds=1))
    response = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})

    assert response.status_code == 400
    assert response.get_json()["code"] == "EXPIRED"
    assert response.get_json()["message"] == "OTP expired"


def test_code_is_still_valid_at_the_expiry_instant(client, customer, outbox, monkeypatch):
    _freeze(monkeypatch, ISSUED_AT)
    code = _request_code(client, outbox)

    _freeze(monkeypatch, ISSUED_AT + timedelta(minutes=10))
    response = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})

    assert response.status_code == 200


def test_wrong_code_does_not_authorize_a_reset(client, customer, outbox):
    _request_code(client, outbox)

    response = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": "000000"})
    assert response.status_code == 400
    assert response.get_json()["code"] == "INVALID_OTP"

    commit = client.post("/set-password", json={"password": "brand-new-pw"})
    assert commit.status_code == 403
    assert commit.get_json()["code"] == "UNAUTHORIZED"


def test_verify_for_unknown_email_is_invalid_request(client):
    response = client.post("/verify-otp", json={"email": "nobody@example.com", "otp": "123456"})

    assert response.status_code == 400
    assert response.get_json()["code"] == "INVALID_REQUEST"


def test_verify_without_outstanding_code_is_expired(client, customer):
    response = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": "123456"})

    assert response.status_code == 400
    assert response.get_json()["code"] == "EXPIRED"


def test_correct_code_verifies_repeatedly(client, customer, outbox):
    code = _request_code(client, outbox)

    first = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})
    second = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})

    assert first.status_code == second.status_code == 200
    assert second.get_json() == {"success": True, "message": "OTP verified successfully"}


def test_second_issue_invalidates_the_first(client, customer, outbox, monkeypatch):
    _codes(monkeypatch, "111111", "222222")
    first = _request_code(client, outbox)
    second = _request_code(client, outbox)

    stale = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": first})
    fresh = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": second})

    assert stale.status_code == 400
    assert stale.get_json()["code"] == "INVALID_OTP"
    assert fresh.status_code == 200


def test_commit_without_verification_is_unauthorized(client, customer, outbox):
    _request_code(client, outbox)

    response = client.post("/set-password", json={"password": "brand-new-pw"})

    assert response.status_code == 403
    assert response.get_json()["message"] == "OTP verification required"


def test_short_password_is_rejected_and_window_stays_open(app, client, customer, outbox):
    code = _request_code(client, outbox)
    client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})

    short = client.post("/set-password", json={"password": "abc"})
    assert short.status_code == 400
    assert short.get_json()["code"] == "INVALID_INPUT"
    assert _user(app).reset_otp_hash is not None

    ok = client.post("/set-password", json={"password": "long-enough"})
    assert ok.status_code == 200


def test_full_reset_scenario(app, make_user, outbox, monkeypatch):
    make_user("u@x.com", "original-pw", name="U")
    client = app.test_client()
    _codes(monkeypatch, "482913")
    _freeze(monkeypatch, ISSUED_AT)

    assert _request_code(client, outbox, "u@x.com") == "482913"
    assert _user(app, "u@x.com").otp_expires_at == ISSUED_AT + timedelta(minutes=10)

    _freeze(monkeypatch, ISSUED_AT + timedelta(minutes=2))
    verified = client.post("/verify-otp", json={"email": "u@x.com", "otp": "482913"})
    assert verified.status_code == 200

    committed = client.post("/set-password", json={"password": "hunter22"})
    assert committed.get_json() == {"success": True, "message": "Password reset successfully"}

    user = _user(app, "u@x.com")
    assert user.reset_otp_hash is None
    assert user.otp_expires_at is None

    replay = client.post("/set-password", json={"password": "hunter22"})
    assert replay.status_code == 403
    assert replay.get_json()["code"] == "UNAUTHORIZED"

    reverify = client.post("/verify-otp", json={"email": "u@x.com", "otp": "482913"})
    assert reverify.status_code == 400
    assert reverify.get_json()["code"] == "EXPIRED"

    assert login(app.test_client(), "u@x.com", "original-pw").status_code == 401
    assert login(app.test_client(), "u@x.com", "hunter22").status_code == 200


def test_abandoned_verification_can_be_resumed_from_another_session(app, customer, outbox):
    first = app.test_client()
    code = _request_code(first, outbox)
    first.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})

    second = app.test_client()
    assert second.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code}).status_code == 200
    assert second.post("/set-password", json={"password": "second-pw"}).status_code == 200

    # The first session still holds the capability, but the code is gone.
    stale = first.post("/set-password", json={"password": "first-pw"})
    assert stale.status_code == 403
    assert login(app.test_client(), CUSTOMER_EMAIL, "second-pw").status_code == 200


def test_reset_signs_out_other_sessions(app, customer, outbox):
    signed_in = app.test_client()
    assert login(signed_in, CUSTOMER_EMAIL, CUSTOMER_PASSWORD).status_code == 200
    assert signed_in.get("/api/session").get_json()["loggedIn"] is True

    resetter = app.test_client()
    code = _request_code(resetter, outbox)
    resetter.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": code})
    assert resetter.post("/set-password", json={"password": "rotated-pw"}).status_code == 200

    assert signed_in.get("/api/session").get_json() == {"loggedIn": False}


def test_verify_endpoint_is_rate_limited(tmp_path):
    app = create_app(build_config(tmp_path, RATELIMIT_ENABLED=True), create_db=True)
    client = app.test_client()
    payload = {"email": "nobody@example.com", "otp": "123456"}

    statuses = [client.post("/verify-otp", json=payload).status_code for _ in range(20)]
    limited = client.post("/verify-otp", json=payload)

    assert 429 not in statuses
    assert limited.status_code == 429
    body = limited.get_json()
    assert body["success"] is False
    assert body["code"] == "RATE_LIMITED"


def test_numeric_json_values_are_treated_as_text(client, customer, outbox, monkeypatch):
    _codes(monkeypatch, "482913")
    _request_code(client, outbox)

    verified = client.post("/verify-otp", json={"email": CUSTOMER_EMAIL, "otp": 482913})
    committed = client.post("/set-password", json={"password": 24681357})

    assert verified.status_code == 200
    assert verified.get_json()["success"] is True
    assert committed.status_code == 200
    assert login(client, CUSTOMER_EMAIL, "24681357").status_code == 200


def test_numeric_email_gets_a_structured_answer(client, customer):
    issue = client.post("/forgot-password", json={"email": 12345})
    verify = client.post("/verify-otp", json={"email": 12345, "otp": "000000"})

    assert issue.status_code == 404
    assert issue.get_json() == {"success": False, "message": "Email not found", "code": "NOT_FOUND"}
    assert verify.status_code == 400
    assert verify.get_json()["success"] is False
