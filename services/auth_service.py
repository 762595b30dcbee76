"""
Auth Service - credential verification, OAuth account resolution and
session token issuance
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from auth_utils import create_jwt, decode_jwt, dummy_verify_password, hash_password, verify_password
from crud.user import UserRepository
from database_models import Plan, User
from models.user import Identity, OAuthProfile, SessionGrant
from utils.errors import AuthenticationFailure, ValidationFailure
from utils.security_utils import validate_email, validate_password_strength

logger = logging.getLogger(__name__)

CREDENTIALS_PROVIDER = "credentials"
GOOGLE_PROVIDER = "google"

INVALID_CREDENTIALS = "Invalid email or password"
UNAUTHENTICATED = "Unauthenticated"


class AuthService:
    """
    Service class wrapping both sign-in paths behind one contract.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the auth service.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db
        self.users = UserRepository(db)

    async def verify_credentials(self, email: Optional[str], password: Optional[str]) -> Optional[User]:
        """
        Look up a user by email and check the password.

        Returns the user, or None when the email is unknown, the account has
        no password (OAuth-only), or the password does not match. Never raises
        for bad input.
        """
        if not email or not password:
            return None

        user = await self.users.get_user_by_email(email)
        if user is None or not user.hashed_password:
            # Unknown and OAuth-only accounts cost one hash, like a wrong password
            dummy_verify_password()
            return None

        if not verify_password(password, user.hashed_password):
            return None
        return user

    async def authenticate(self, provider: str, credentials: Dict[str, Any]) -> SessionGrant:
        """
        Authenticate through a provider and issue a session token.

        Args:
            provider: "credentials" or "google"
            credentials: {"email", "password"} for credentials; OpenID userinfo for google

        Raises:
            AuthenticationFailure: with the same generic message for every credential failure
        """
        if provider == CREDENTIALS_PROVIDER:
            user = await self.verify_credentials(credentials.get("email"), credentials.get("password"))
            if user is None:
                logger.info("Credential sign-in rejected")
                raise AuthenticationFailure(INVALID_CREDENTIALS)
        elif provider == GOOGLE_PROVIDER:
            user = await self.resolve_oauth_user(provider, credentials)
        else:
            raise AuthenticationFailure(f"Unsupported sign-in provider: {provider}")

        logger.info(f"User {user.id} signed in via {provider}")
        return self.issue_session(user)

    async def resolve_oauth_user(self, provider: str, userinfo: Dict[str, Any]) -> User:
        """
        Find or create the local user for an OAuth identity.

        Matches the linked account first, then the email (linking the
        account), and otherwise creates a passwordless user on the free plan.
        """
        try:
            profile = OAuthProfile.model_validate(userinfo)
        except ValidationError:
            raise AuthenticationFailure("Invalid profile returned by the sign-in provider")

        user = await self.users.get_user_by_oauth_account(provider, profile.sub)
        if user is not None:
            return user

        if not profile.email:
            raise AuthenticationFailure("Email not provided by the sign-in provider")
        if not profile.email_verified:
            raise AuthenticationFailure("Email not verified by the sign-in provider")

        user = await self.users.get_user_by_email(profile.email)
        if user is None:
            user = await self.users.create_user({
                "email": profile.email,
                "name": profile.name,
                "image": profile.picture,
            })
            logger.info(f"Created user {user.id} from {provider} sign-in")
        else:
            updates = {}
            if not user.name and profile.name:
                updates["name"] = profile.name
            if not user.image and profile.picture:
                updates["image"] = profile.picture
            if updates:
                await self.users.update_user(user, updates)

        await self.users.link_oauth_account(user, provider, profile.sub)
        await self.db.commit()
        return user

    async def register_user(self, name: str, email: str, password: str) -> User:
        """
        Create a credentials account.

        Raises:
            ValidationFailure: invalid name/email/password or email already registered
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()

        if not name:
            raise ValidationFailure("Name is required")
        if not validate_email(email):
            raise ValidationFailure("Invalid email format")
        try:
            validate_password_strength(password)
        except ValueError as e:
            raise ValidationFailure(str(e))

        if await self.users.get_user_by_email(email):
            raise ValidationFailure("Email already registered")

        user = await self.users.create_user({
            "name": name,
            "email": email,
            "hashed_password": hash_password(password),
        })
        await self.db.commit()
        logger.info(f"Registered user {user.id}")
        return user

    def issue_session(self, user: User) -> SessionGrant:
        identity = Identity(user_id=user.id, plan=user.plan or Plan.FREE)
        token = create_jwt(str(identity.user_id), identity.plan.value)
        return SessionGrant(identity=identity, token=token)

    async def refresh_session(self, identity: Identity) -> SessionGrant:
        """Re-issue a token carrying the user's current plan."""
        user = await self.users.get_user_by_id(identity.user_id)
        if user is None:
            raise AuthenticationFailure(UNAUTHENTICATED)
        return self.issue_session(user)

    @staticmethod
    def decode_session(token: Optional[str]) -> Identity:
        """
        Turn a session token back into an identity without touching the store.

        Raises:
            AuthenticationFailure: missing, malformed, tampered or expired token
        """
        if not token:
            raise AuthenticationFailure(UNAUTHENTICATED)

        payload = decode_jwt(token)
        if not payload:
            raise AuthenticationFailure(UNAUTHENTICATED)

        try:
            return Identity(user_id=int(payload["sub"]), plan=payload.get("plan", Plan.FREE))
        except (KeyError, ValueError, TypeError, ValidationError):
            raise AuthenticationFailure(UNAUTHENTICATED)
