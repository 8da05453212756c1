"""Base service class shared by the engine's services.

Services own transaction boundaries: every public operation runs inside one
``_transaction`` block, so a failure anywhere rolls the whole operation back
and surfaces as a typed ServiceError instead of a driver exception.
"""

from __future__ import annotations

import logging
from abc import ABC
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.services.exceptions import ServiceError
from universe.services.exceptions import StoreUnavailableError
from universe.services.models import ChangeType
from universe.shared.date_provider import get_date_provider
from universe.web.crud import DatabaseOperationError


class ChangePublisherProtocol(Protocol):
    """Anything that can announce a row change to realtime subscribers."""

    async def publish(
        self,
        table: str,
        change_type: ChangeType,
        record: Dict[str, Any]
    ) -> None:
        ...


class BaseService(ABC):
    """Abstract base class for all engine services.

    Provides the session factory, optional change publisher, the clock and
    consistent operation/error logging.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        change_feed: Optional[ChangePublisherProtocol] = None,
        service_name: Optional[str] = None
    ):
        """Initialize base service.

        Args:
            session_maker: Factory for database sessions
            change_feed: Realtime publisher notified after commits (optional)
            service_name: Name of the service for logging
        """
        self._session_maker = session_maker
        self._change_feed = change_feed
        self._service_name = service_name or self.__class__.__name__
        self._logger = logging.getLogger(f"{__name__}.{self._service_name}")

    @property
    def service_name(self) -> str:
        """Get the service name."""
        return self._service_name

    def _now(self) -> datetime:
        return get_date_provider().utcnow()

    @asynccontextmanager
    async def _transaction(self, operation: str, **context: Any) -> AsyncIterator[AsyncSession]:
        """Run a block in one committed-or-rolled-back transaction.

        Raises:
            StoreUnavailableError: If the database call fails
            ServiceError: Business rejections raised inside the block
        """
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except ServiceError:
            raise
        except (DatabaseOperationError, SQLAlchemyError) as e:
            self._log_error(operation, e, **context)
            raise StoreUnavailableError(operation) from e

    async def _publish(
        self,
        table: str,
        change_type: ChangeType,
        record: Dict[str, Any]
    ) -> None:
        """Announce a committed change.

        The write already happened, so a publish failure is only logged;
        subscribers catch up on their next full fetch.
        """
        if self._change_feed is None:
            return

        try:
            await self._change_feed.publish(table, change_type, record)
        except (RedisError, StoreUnavailableError) as e:
            self._logger.warning(f"Change notification failed for {table} {change_type.value}: {e}")

    def _log_operation(self, operation: str, **context: Any) -> None:
        """Log a service operation with context."""
        self._logger.info(
            f"Service operation: {operation}",
            extra={
                "service": self._service_name,
                "operation": operation,
                **context
            }
        )

    def _log_error(self, operation: str, error: Exception, **context: Any) -> None:
        """Log a service error with context."""
        self._logger.error(
            f"Service operation failed: {operation} - {error}",
            extra={
                "service": self._service_name,
                "operation": operation,
                "error_type": type(error).__name__,
                **context
            }
        )
