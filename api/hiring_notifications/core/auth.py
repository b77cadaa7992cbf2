from dataclasses import dataclass
from enum import Enum

NOTIFICATIONS_READ = "notifications:read"
NOTIFICATIONS_WRITE = "notifications:write"
HIRING_WRITE = "hiring:write"

ROLE_SCOPES: dict[str, set[str]] = {
    "student": {NOTIFICATIONS_READ, NOTIFICATIONS_WRITE},
    "company": {NOTIFICATIONS_READ, NOTIFICATIONS_WRITE, HIRING_WRITE},
    "admin": {NOTIFICATIONS_READ, NOTIFICATIONS_WRITE, HIRING_WRITE},
}
DEFAULT_ROLE = "student"


class PrincipalRole(str, Enum):
    STUDENT = "student"
    COMPANY = "company"
    ADMIN = "admin"


@dataclass(slots=True)
class Principal:
    subject: str
    scopes: set[str]
    role: PrincipalRole = PrincipalRole.STUDENT

    @property
    def user_id(self) -> str:
        return self.subject

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def resolve_role(raw_role: str | None) -> PrincipalRole:
    if not raw_role:
        return PrincipalRole(DEFAULT_ROLE)
    try:
        return PrincipalRole(raw_role.strip().lower())
    except ValueError:
        return PrincipalRole(DEFAULT_ROLE)


def scopes_for_role(role: PrincipalRole) -> set[str]:
    return set(ROLE_SCOPES.get(role.value, ROLE_SCOPES[DEFAULT_ROLE]))
