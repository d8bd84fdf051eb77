import enum
from dataclasses import dataclass


class ActorRole(str, enum.Enum):
    ADMIN = 'ADMIN'
    PRACTITIONER = 'PRACTITIONER'
    REQUESTER = 'REQUESTER'


@dataclass(frozen=True)
class Actor:
    """Who is calling. Passed explicitly into every ledger and query call."""

    role: ActorRole
    actor_id: int

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    def can_access(self, practitioner_id: int, requester_id: int) -> bool:
        if self.role is ActorRole.ADMIN:
            return True
        if self.role is ActorRole.PRACTITIONER:
            return practitioner_id == self.actor_id
        return requester_id == self.actor_id
