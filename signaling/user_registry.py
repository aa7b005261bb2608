from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from shared.protocol import UserStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UserRecord:
    connection_id: str
    identity: str
    display_name: str
    status: UserStatus = UserStatus.AVAILABLE

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.connection_id,
            "phoneNumber": self.identity,
            "userName": self.display_name,
            "status": self.status.value,
            "socketId": self.connection_id,
        }


class UserRegistry:
    """Maps live connection ids to registered users.

    The registry does no locking of its own; it is owned by a single
    :class:`~signaling.call_coordinator.CallCoordinator` which serializes
    access. Identity lookups are a linear scan and return the first match in
    insertion order, since phone numbers are not required to be unique.
    """

    def __init__(self) -> None:
        self._users: Dict[str, UserRecord] = {}

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._users

    def register(self, connection_id: str, identity: str, display_name: str) -> UserRecord:
        record = UserRecord(connection_id=connection_id, identity=identity, display_name=display_name)
        replaced = connection_id in self._users
        self._users[connection_id] = record
        logger.debug("%s user %s (%s) on %s", "Re-registered" if replaced else "Registered", display_name, identity, connection_id)
        return record

    def lookup_by_connection(self, connection_id: str) -> Optional[UserRecord]:
        return self._users.get(connection_id)

    def lookup_by_identity(self, identity: str) -> Optional[UserRecord]:
        for record in self._users.values():
            if record.identity == identity:
                return record
        return None

    def remove(self, connection_id: str) -> Optional[UserRecord]:
        return self._users.pop(connection_id, None)

    def set_status(self, connection_id: str, status: UserStatus) -> None:
        record = self._users.get(connection_id)
        if record is None:
            return
        record.status = status

    def snapshot(self) -> list[UserRecord]:
        """Return copies of every record in registration order."""

        return [dataclasses.replace(record) for record in self._users.values()]
