from dataclasses import dataclass

from .errors import AuthorizationError


@dataclass(frozen=True)
class Actor:
    """The already-authenticated caller of an operation."""
    user_id: str
    is_admin: bool = False


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise AuthorizationError("Admin access required")


def require_owner_or_admin(actor: Actor, order) -> None:
    if actor.is_admin or order.user_id == actor.user_id:
        return
    raise AuthorizationError("Not authorized to access this order")


def require_owner(actor: Actor, order) -> None:
    if order.user_id != actor.user_id:
        raise AuthorizationError("Not authorized")
