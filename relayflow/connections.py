"""Resolution of user connections for action execution."""

from __future__ import annotations

import logging

from .errors import NoActiveConnectionError, PersistenceFailedError
from .models import Connection, utcnow
from .persistence.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class ConnectionResolver:
    """Looks up the most recently used active connection for a user and service."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def resolve(self, user_id: int, service: str) -> Connection:
        connection = await self._repository.find_active_connection(user_id, service)
        if connection is None:
            raise NoActiveConnectionError(user_id, service)

        # last_used_at is advisory; update failures are logged only
        now = utcnow()
        try:
            await self._repository.touch_connection(connection.id, now)
        except PersistenceFailedError as exc:
            logger.error(
                f"Failed to update last_used_at for connection {connection.id}: {exc}"
            )
        else:
            connection = connection.model_copy(update={"last_used_at": now})
        return connection
