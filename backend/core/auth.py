"""
Explicit actor identity passed into service calls.

Views resolve the authenticated user once and hand the resulting
ActorContext to the ledger, so service code never reaches into request
state to find out who is acting.
"""
from dataclasses import dataclass

from .exceptions import Unauthorized


@dataclass(frozen=True)
class ActorContext:
    user_id: int
    name: str

    @classmethod
    def for_user(cls, user):
        if user is None or not getattr(user, 'is_authenticated', False):
            raise Unauthorized()
        if not user.is_active:
            raise Unauthorized('User account is disabled.')
        return cls(user_id=user.pk, name=user.display_name)

    @classmethod
    def from_request(cls, request):
        """Resolve the acting user of a request, or raise Unauthorized"""
        return cls.for_user(getattr(request, 'user', None))
