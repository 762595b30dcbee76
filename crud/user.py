"""
UserRepository for database operations on User model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Account, Plan, User


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for the User and Account models.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address.

        Args:
            email: User's email address (case-insensitive search)

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        """
        Retrieve a user by ID.

        Args:
            user_id: User's ID

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_user_by_oauth_account(self, provider: str, provider_account_id: str) -> Optional[User]:
        """Retrieve the user linked to an external OAuth identity."""
        result = await self.db.execute(
            select(User)
            .join(Account, Account.user_id == User.id)
            .where(
                Account.provider == provider,
                Account.provider_account_id == provider_account_id,
            )
        )
        return result.scalar_one_or_none()

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new user in the database.

        Args:
            user_data: Dictionary containing user data. Must include:
                - email: str
                Optional:
                - name: str
                - hashed_password: str (omitted for OAuth-only accounts)
                - image: str
                - plan: Plan (defaults to FREE)

        Returns:
            Created User object
        """
        user = User(
            email=user_data["email"].strip().lower(),
            name=user_data.get("name"),
            hashed_password=user_data.get("hashed_password"),
            image=user_data.get("image"),
            plan=user_data.get("plan", Plan.FREE),
        )
        self.db.add(user)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(user)  # Refresh to get the generated ID
        return user

    async def link_oauth_account(self, user: User, provider: str, provider_account_id: str) -> Account:
        account = Account(
            user_id=user.id,
            provider=provider,
            provider_account_id=provider_account_id,
        )
        self.db.add(account)
        await self.db.flush()
        return account

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields. Values are overwritten unconditionally.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"plan": Plan.BASIC})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await self.db.flush()
        await self.db.refresh(user)
        return user
