"""
Unit tests for UserRepository and AuthService authentication operations
"""
import pytest
from authlib.integrations.starlette_client import OAuthError

from crud.user import UserRepository
from auth_utils import decode_jwt, hash_password, verify_password
from database_models import Plan
from dependencies import get_oauth
from main import app
from services.auth_service import AuthService, GOOGLE_PROVIDER, INVALID_CREDENTIALS
from utils.errors import AuthenticationFailure
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_create_and_get_user(test_db):
    """
    Test creating a new user and retrieving it by email.

    This test verifies:
    - User creation via UserRepository.create_user
    - User retrieval via UserRepository.get_user_by_email
    - Email normalisation and the default free plan
    """
    user_repo = UserRepository(test_db)

    test_email = "Test@Example.com"
    hashed_pwd = hash_password("test_password_123")

    created_user = await user_repo.create_user({
        "email": test_email,
        "name": "Test",
        "hashed_password": hashed_pwd,
    })

    assert created_user.id is not None
    assert created_user.email == "test@example.com"
    assert created_user.hashed_password == hashed_pwd
    assert created_user.plan == Plan.FREE
    assert created_user.stripe_customer_id is None

    await test_db.commit()

    retrieved_user = await user_repo.get_user_by_email(" TEST@example.com ")
    assert retrieved_user is not None
    assert retrieved_user.id == created_user.id


@pytest.mark.asyncio
async def test_login_verification(test_db):
    """
    Test password verification for login.
    """
    user_repo = UserRepository(test_db)

    test_password = "secure_password_456"
    await user_repo.create_user({
        "email": "login_test@example.com",
        "hashed_password": hash_password(test_password),
    })
    await test_db.commit()

    retrieved_user = await user_repo.get_user_by_email("login_test@example.com")

    assert verify_password(test_password, retrieved_user.hashed_password) is True
    assert verify_password("wrong_password", retrieved_user.hashed_password) is False
    assert verify_password(test_password, None) is False
    assert verify_password(test_password, "not-a-hash") is False


@pytest.mark.asyncio
async def test_verify_credentials(test_db, make_user):
    """Only the right email/password pair yields the user."""
    user = await make_user(email="alice@example.com", password="password123")
    service = AuthService(test_db)

    verified = await service.verify_credentials("ALICE@example.com", "password123")
    assert verified is not None
    assert verified.id == user.id

    assert await service.verify_credentials("alice@example.com", "wrong-password1") is None
    assert await service.verify_credentials("nobody@example.com", "password123") is None
    assert await service.verify_credentials(None, "password123") is None
    assert await service.verify_credentials("alice@example.com", "") is None


@pytest.mark.asyncio
async def test_verify_credentials_rejects_oauth_only_account(test_db):
    user_repo = UserRepository(test_db)
    await user_repo.create_user({"email": "oauth@example.com", "name": "OAuth"})
    await test_db.commit()

    assert await AuthService(test_db).verify_credentials("oauth@example.com", "anything1") is None


@pytest.mark.asyncio
async def test_authenticate_issues_token_with_plan(test_db, make_user):
    user = await make_user(email="paid@example.com", password="password123", plan=Plan.BASIC)

    grant = await AuthService(test_db).authenticate(
        "credentials", {"email": "paid@example.com", "password": "password123"}
    )

    assert grant.identity.user_id == user.id
    assert grant.identity.plan == Plan.BASIC

    claims = decode_jwt(grant.token)
    assert claims["sub"] == str(user.id)
    assert claims["plan"] == "BASIC"
    assert claims["exp"] > claims["iat"]


@pytest.mark.asyncio
async def test_authenticate_unknown_provider(test_db):
    with pytest.raises(AuthenticationFailure):
        await AuthService(test_db).authenticate("github", {})


# ----------------------------------------------------------------------------
# OAuth account resolution
# ----------------------------------------------------------------------------

GOOGLE_PROFILE = {
    "sub": "google-oauth2|1234567890",
    "email": "Grace@Example.com",
    "email_verified": True,
    "name": "Grace Hopper",
    "picture": "https://lh3.googleusercontent.com/a/grace",
}


@pytest.mark.asyncio
async def test_oauth_sign_in_creates_user(test_db):
    user = await AuthService(test_db).resolve_oauth_user(GOOGLE_PROVIDER, GOOGLE_PROFILE)

    assert user.email == "grace@example.com"
    assert user.name == "Grace Hopper"
    assert user.image == GOOGLE_PROFILE["picture"]
    assert user.hashed_password is None
    assert user.plan == Plan.FREE

    linked = await UserRepository(test_db).get_user_by_oauth_account(GOOGLE_PROVIDER, GOOGLE_PROFILE["sub"])
    assert linked.id == user.id


@pytest.mark.asyncio
async def test_oauth_sign_in_is_stable_across_logins(test_db):
    service = AuthService(test_db)

    first = await service.resolve_oauth_user(GOOGLE_PROVIDER, GOOGLE_PROFILE)
    # Provider-side email change does not create a second user
    second = await service.resolve_oauth_user(
        GOOGLE_PROVIDER, {**GOOGLE_PROFILE, "email": "grace.new@example.com"}
    )

    assert first.id == second.id
    assert await UserRepository(test_db).get_user_by_email("grace.new@example.com") is None


@pytest.mark.asyncio
async def test_oauth_sign_in_links_existing_email(test_db, make_user):
    existing = await make_user(email="grace@example.com", password="password123", name=None)

    user = await AuthService(test_db).resolve_oauth_user(GOOGLE_PROVIDER, GOOGLE_PROFILE)

    assert user.id == existing.id
    # Missing profile fields are filled from the provider, the password is kept
    assert user.name == "Grace Hopper"
    assert user.hashed_password is not None


@pytest.mark.asyncio
async def test_oauth_sign_in_requires_verified_email(test_db):
    service = AuthService(test_db)

    with pytest.raises(AuthenticationFailure):
        await service.resolve_oauth_user(GOOGLE_PROVIDER, {**GOOGLE_PROFILE, "email_verified": False})

    with pytest.raises(AuthenticationFailure):
        await service.resolve_oauth_user(GOOGLE_PROVIDER, {"sub": "no-email"})

    assert await UserRepository(test_db).get_user_by_email("grace@example.com") is None


@pytest.mark.asyncio
async def test_oauth_profile_without_verification_claim(test_db, make_user):
    """A profile that never says the email is verified is treated as unverified."""
    existing = await make_user(email="grace@example.com")
    profile = {key: value for key, value in GOOGLE_PROFILE.items() if key != "email_verified"}

    with pytest.raises(AuthenticationFailure):
        await AuthService(test_db).resolve_oauth_user(GOOGLE_PROVIDER, profile)

    repo = UserRepository(test_db)
    assert await repo.get_user_by_oauth_account(GOOGLE_PROVIDER, GOOGLE_PROFILE["sub"]) is None
    assert (await repo.get_user_by_email("grace@example.com")).id == existing.id


# ----------------------------------------------------------------------------
# Routes
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_then_login(async_client):
    response = await async_client.post(
        "/api/auth/register",
        json={"name": "Ada", "email": "ada@example.com", "password": "analytical1"},
    )
    assert response.status_code == 201
    user_id = response.json()["data"]["user_id"]

    response = await async_client.post(
        "/api/auth/login",
        json={"email": "ada@example.com", "password": "analytical1"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["data"] == {"user_id": user_id, "plan": "FREE"}

    set_cookie = response.headers["set-cookie"]
    assert "auth_token=" in set_cookie
    assert "httponly" in set_cookie.lower()
    assert "samesite=lax" in set_cookie.lower()

    # Cookie is sent back automatically
    response = await async_client.get("/api/auth/me")
    assert response.status_code == 200
    assert response.json()["data"] == {"user_id": user_id, "plan": "FREE"}


@pytest.mark.asyncio
async def test_me_accepts_bearer_token(async_client, make_user):
    user = await make_user(plan=Plan.PREMIUM)

    response = await async_client.get("/api/auth/me", headers=auth_headers(user))

    assert response.status_code == 200
    assert response.json()["data"] == {"user_id": str(user.id), "plan": "PREMIUM"}


@pytest.mark.asyncio
async def test_me_without_token(async_client):
    response = await async_client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


@pytest.mark.asyncio
async def test_refresh_picks_up_plan_change(async_client, test_db, make_user):
    """A token minted before an upgrade keeps the old plan until refreshed."""
    user = await make_user()
    headers = auth_headers(user)

    await UserRepository(test_db).update_user(user, {"plan": Plan.PREMIUM})
    await test_db.commit()

    response = await async_client.get("/api/auth/me", headers=headers)
    assert response.json()["data"]["plan"] == "FREE"

    response = await async_client.post("/api/auth/refresh", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["plan"] == "PREMIUM"

    token = response.cookies.get("auth_token")
    assert decode_jwt(token)["plan"] == "PREMIUM"


@pytest.mark.asyncio
async def test_logout_clears_cookie(async_client):
    response = await async_client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json()["ok"] is True
    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith("auth_token=")
    assert "max-age=0" in set_cookie.lower()


class _FakeGoogleClient:
    def __init__(self, token=None, error=None):
        self.token = token
        self.error = error

    async def authorize_access_token(self, request):
        if self.error:
            raise self.error
        return self.token


class _FakeOAuth:
    def __init__(self, google):
        self.google = google


@pytest.mark.asyncio
async def test_google_callback_sets_cookie_and_redirects(async_client):
    oauth = _FakeOAuth(_FakeGoogleClient(token={"access_token": "ya29", "userinfo": GOOGLE_PROFILE}))
    app.dependency_overrides[get_oauth] = lambda: oauth

    response = await async_client.get("/api/auth/google/callback?code=abc&state=xyz")

    assert response.status_code == 303
    assert response.headers["location"] == "http://localhost:3000/dashboard"
    token = response.cookies.get("auth_token")
    assert token is not None
    assert decode_jwt(token)["plan"] == "FREE"


@pytest.mark.asyncio
async def test_google_callback_error_redirects_to_sign_in(async_client):
    oauth = _FakeOAuth(_FakeGoogleClient(error=OAuthError(error="access_denied")))
    app.dependency_overrides[get_oauth] = lambda: oauth

    response = await async_client.get("/api/auth/google/callback?error=access_denied")

    assert response.status_code == 303
    assert response.headers["location"] == "http://localhost:3000/sign-in?error=OAuthSignin"
    assert "auth_token" not in response.cookies


@pytest.mark.asyncio
async def test_google_login_not_configured(async_client):
    # No OAuth client is built when the lifespan has not run
    response = await async_client.get("/api/auth/google/login")

    assert response.status_code == 503
    assert response.json()["error"] == "not_configured"


@pytest.mark.asyncio
async def test_login_failure_message(async_client, make_user):
    await make_user(email="bob@example.com", password="password123")

    response = await async_client.post(
        "/api/auth/login", json={"email": "bob@example.com", "password": "wrong-pass1"}
    )

    assert response.status_code == 401
    assert response.json()["message"] == INVALID_CREDENTIALS
