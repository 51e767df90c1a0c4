"""
shared/utils/actors.py
The verified caller of a core operation. Resolved once per request by the
auth dependency and passed explicitly into every service call.
"""

import uuid
from dataclasses import dataclass

from shared.models.models import UserRole


@dataclass(frozen=True)
class Actor:
    id: uuid.UUID
    role: UserRole

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, role=UserRole(user.role))

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_request_bookings(self) -> bool:
        return self.role == UserRole.REQUESTER

    @property
    def can_perform(self) -> bool:
        return self.role == UserRole.PROVIDER

    def is_party_to(self, booking) -> bool:
        return self.id in (booking.requester_id, booking.provider_id)
