"""User directory used by the interactive authorize step.

The directory resolves a username to a stable identity and checks the
password. The bridge only consumes the interface; ``InMemoryUserDirectory``
is a reference implementation fed from YAML.
"""

import hmac
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from shared.config import load_yaml_config
from shared.logging import get_logger
from shared.models import UserIdentity

logger = get_logger(__name__)


class UserDirectory(ABC):
    """Username → identity resolution."""

    @abstractmethod
    def get_user_by_name(self, username: str) -> Optional[UserIdentity]:
        """Look up a user by name; None when unknown."""
        pass

    @abstractmethod
    def verify_password(self, user: UserIdentity, password: str) -> bool:
        """Check a password for a resolved user."""
        pass


class InMemoryUserDirectory(UserDirectory):
    """
    Users held in a dict keyed by case-folded username.

    A user configured without a password is accepted with any non-blank
    password.
    """

    def __init__(self, users: Optional[list[dict[str, Any]]] = None) -> None:
        self._users: dict[str, UserIdentity] = {}
        self._passwords: dict[str, Optional[str]] = {}

        for entry in users or []:
            self.add_user(
                username=entry["username"],
                password=entry.get("password"),
                user_id=entry.get("user_id"),
            )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryUserDirectory":
        """Load users from a YAML file with a top-level ``users`` list."""
        data = load_yaml_config(path)
        directory = cls(data.get("users", []))
        logger.info("User directory loaded", path=str(path), users=len(directory))
        return directory

    def __len__(self) -> int:
        return len(self._users)

    def add_user(
        self,
        username: str,
        password: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> UserIdentity:
        """Register a user; the id defaults to a name-derived UUID so it is stable across restarts."""
        user = UserIdentity(
            user_id=user_id or str(uuid.uuid5(uuid.NAMESPACE_URL, f"user:{username.casefold()}")),
            username=username,
        )
        self._users[username.casefold()] = user
        self._passwords[user.user_id] = password
        return user

    def get_user_by_name(self, username: str) -> Optional[UserIdentity]:
        if not username:
            return None
        return self._users.get(username.casefold())

    def verify_password(self, user: UserIdentity, password: str) -> bool:
        if not password:
            return False

        expected = self._passwords.get(user.user_id)
        if expected is None:
            return True

        return hmac.compare_digest(expected.encode("utf-8"), password.encode("utf-8"))
