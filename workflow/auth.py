from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Union

from shared.errors import AuthenticationError
from shared.models import Role, User

logger = logging.getLogger(__name__)


class AuthProvider(ABC):
    @abstractmethod
    def authenticate(self, username: str, password: str) -> User:
        """Return the resolved user or raise AuthenticationError."""
        pass


# Simulated Windows domain roster, one entry per account.
DEFAULT_DIRECTORY: Dict[Role, List[Dict[str, str]]] = {
    Role.STUDENT: [
        {"username": "john.smith", "display_name": "John Smith", "email": "john.smith@university.edu"},
        {"username": "sarah.jones", "display_name": "Sarah Jones", "email": "sarah.jones@university.edu"},
        {"username": "michael.brown", "display_name": "Michael Brown", "email": "michael.brown@university.edu"},
        {"username": "emily.davis", "display_name": "Emily Davis", "email": "emily.davis@university.edu"},
        {"username": "david.wilson", "display_name": "David Wilson", "email": "david.wilson@university.edu"},
    ],
    Role.LIBRARIAN: [
        {"username": "dr.martinez", "display_name": "Dr. Maria Martinez", "email": "m.martinez@university.edu"},
        {"username": "prof.thompson", "display_name": "Prof. Robert Thompson", "email": "r.thompson@university.edu"},
        {"username": "ms.chen", "display_name": "Ms. Lisa Chen", "email": "l.chen@university.edu"},
    ],
    Role.REVIEWER: [
        {"username": "dr.anderson", "display_name": "Dr. James Anderson", "email": "j.anderson@university.edu"},
        {"username": "prof.garcia", "display_name": "Prof. Elena Garcia", "email": "e.garcia@university.edu"},
        {"username": "dr.kumar", "display_name": "Dr. Rajesh Kumar", "email": "r.kumar@university.edu"},
    ],
    Role.ADMIN: [
        {"username": "admin.rodriguez", "display_name": "Admin Carlos Rodriguez", "email": "c.rodriguez@university.edu"},
        {"username": "admin.patel", "display_name": "Admin Priya Patel", "email": "p.patel@university.edu"},
    ],
}


class DirectoryAuthProvider(AuthProvider):
    """
    Development stand-in for the domain controller: accounts are looked up by
    username and the password is not checked.
    """

    def __init__(self, directory: Optional[Dict[Role, List[Dict[str, str]]]] = None) -> None:
        self._users: Dict[str, User] = {}
        for role, entries in (directory or DEFAULT_DIRECTORY).items():
            for e in entries:
                self._users[e["username"].lower()] = User(
                    username=e["username"],
                    role=Role(role),
                    display_name=e.get("display_name", e["username"]),
                    email=e.get("email", f"{e['username']}@university.edu"),
                )

    def authenticate(self, username: str, password: str) -> User:
        if not username or not password:
            raise AuthenticationError("Username and password are required")
        user = self._users.get(username.strip().lower())
        if user is None:
            logger.warning("Login rejected for unknown user %s", username)
            raise AuthenticationError("User not found")
        logger.info("User %s signed in as %s", user.username, user.role.value)
        return user

    def users(self, role: Optional[Role] = None) -> List[User]:
        return [u for u in self._users.values() if role is None or u.role == role]

    def get(self, username: str) -> Optional[User]:
        return self._users.get(username.lower())


def has_role(user: Optional[User], roles: Union[Role, Iterable[Role]]) -> bool:
    if user is None:
        return False
    if isinstance(roles, Role):
        return user.role == roles
    return user.role in set(roles)
