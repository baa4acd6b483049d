from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ActorContext:
    """
    Identity and client details of whoever is performing an operation.

    Built once per HTTP request (or CLI invocation) and passed explicitly
    into every mutating service call. ``actor_id`` of None means the system
    itself, e.g. the expiry sweep.
    """
    actor_id: Optional[int]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def system(cls) -> "ActorContext":
        return cls(actor_id=None, user_agent="accesshub-system")
