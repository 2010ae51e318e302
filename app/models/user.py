from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class User:
    """Read-only view of an account: what certificates and emails need."""

    id: UUID
    email: str
    name: str = ""
    roles: tuple[str, ...] = ("student",)

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@", 1)[0]

    @staticmethod
    def new(
        *, email: str, name: str = "", roles: tuple[str, ...] = ("student",)
    ) -> User:
        return User(id=uuid4(), email=email.strip().lower(), name=name, roles=roles)
