from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    user_id: subject from the JWT (a UUID string)
    roles:   platform roles (student, instructor, admin)
    """

    user_id: str
    roles: frozenset[str]

    @property
    def id(self) -> UUID:
        return UUID(self.user_id)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)

    def is_admin(self) -> bool:
        return "admin" in self.roles

    def owns_or_admin(self, owner_id: UUID) -> bool:
        return self.is_admin() or self.user_id == str(owner_id)
