"""
Authenticated Query Executor
Runs data-access callables with a valid credential and folds failures into results
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_STATUS_CODES = {401, 403}


@dataclass
class QueryResult(Generic[T]):
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthorizationError(Exception):
    """Raised by query callables when the credential was rejected."""


class CredentialProvider(Protocol):
    async def ensure_valid(self) -> str:
        ...

    async def refresh(self) -> str:
        ...


class StaticCredentialProvider:
    """Credential that never expires (service-role access, local runs)."""

    def __init__(self, token: str = "service") -> None:
        self.token = token

    async def ensure_valid(self) -> str:
        return self.token

    async def refresh(self) -> str:
        return self.token


def is_authorization_error(exc: BaseException) -> bool:
    if isinstance(exc, AuthorizationError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    return status in AUTH_STATUS_CODES


class AuthenticatedQueryExecutor:
    """
    ``call(query_fn)`` guarantees a valid credential before ``query_fn`` runs.

    On an authorization-class error the credential is refreshed once and the query
    retried once; every other failure becomes ``QueryResult(error=...)``.
    """

    def __init__(self, client_factory: Callable[[str], Any], credentials: Optional[CredentialProvider] = None):
        self.client_factory = client_factory
        self.credentials = credentials or StaticCredentialProvider()

    async def _run(self, token: str, query_fn: Callable[[Any], Awaitable[T]]) -> T:
        async with self.client_factory(token) as client:
            return await query_fn(client)

    async def call(self, query_fn: Callable[[Any], Awaitable[T]], label: str = "query") -> QueryResult[T]:
        try:
            token = await self.credentials.ensure_valid()
        except Exception as e:
            logger.error(f"{label}: no valid credential: {e}")
            return QueryResult(error=f"credential unavailable: {e}")

        try:
            return QueryResult(data=await self._run(token, query_fn))
        except Exception as e:
            if not is_authorization_error(e):
                logger.warning(f"{label} failed: {e}")
                return QueryResult(error=str(e) or e.__class__.__name__)
            logger.info(f"{label}: authorization rejected, refreshing credential and retrying once")

        try:
            token = await self.credentials.refresh()
            return QueryResult(data=await self._run(token, query_fn))
        except Exception as e:
            logger.warning(f"{label} failed after credential refresh: {e}")
            return QueryResult(error=str(e) or e.__class__.__name__)
