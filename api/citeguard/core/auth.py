from dataclasses import dataclass
from enum import Enum


class PrincipalType(str, Enum):
    HUMAN = "human"
    MACHINE = "machine"


@dataclass(slots=True, frozen=True)
class Principal:
    """Caller identity resolved from a Supabase session or a module API key."""

    principal_type: PrincipalType
    subject: str
    scopes: frozenset[str]
    role: str | None = None
    actor_id: str | None = None

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")

    @property
    def is_machine(self) -> bool:
        return self.principal_type is PrincipalType.MACHINE

    @property
    def actor_label(self) -> str:
        # Stored in created_by columns, e.g. "machine:citeguard-scheduler".
        return f"{self.principal_type.value}:{self.subject}"
