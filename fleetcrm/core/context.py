from dataclasses import dataclass


@dataclass
class ActorUser:
    """The already-authenticated user a service call acts on behalf of."""

    user_id: int
    role: str
    correlation_id: str | None = None

    @property
    def is_management(self) -> bool:
        return self.role == "MANAGEMENT"
