"""
Storage Service Layer
Read-only marketplace queries routed through the authenticated query executor
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc, and_
from typing import Any, Dict, List, Optional, Sequence
import logging

from database import AsyncSessionLocal, Currency, Item as ItemRow, User
from services.models import AVAILABLE_STATUS, Item
from services.query_executor import AuthenticatedQueryExecutor, CredentialProvider, QueryResult
from settings import sanitize_category_ids, sanitize_user_id

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 50


def session_client_factory(token: str) -> AsyncSession:
    """One session per call; the credential is not needed by a direct SQL connection."""
    return AsyncSessionLocal()


class StorageService:
    """Data source for users, their items, candidate pools and the currency rate table"""

    def __init__(
        self,
        executor: Optional[AuthenticatedQueryExecutor] = None,
        credentials: Optional[CredentialProvider] = None,
    ):
        self.executor = executor or AuthenticatedQueryExecutor(session_client_factory, credentials)

    # ---------- helpers ----------

    @staticmethod
    def _row_to_record(row: Any) -> Dict[str, Any]:
        """Column name -> value for an ORM row."""
        return {c.name: getattr(row, c.key, None) for c in row.__table__.columns}

    def _rows_to_items(self, rows: Sequence[Any]) -> List[Item]:
        items: List[Item] = []
        for row in rows:
            item = Item.from_record(self._row_to_record(row))
            if item is not None:
                items.append(item)
        return items

    # ---------- users ----------

    async def get_user_profile(self, user_id: str) -> QueryResult[Optional[Dict[str, Any]]]:
        user_id = sanitize_user_id(user_id)
        if not user_id:
            return QueryResult(data=None)

        async def _query(session: AsyncSession):
            result = await session.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()
            if user is None:
                return None
            return {
                "id": user.id,
                "favorite_categories": sanitize_category_ids(user.favorite_categories),
                "location_lat": user.location_lat,
                "location_lng": user.location_lng,
                "preferred_radius_km": user.preferred_radius_km,
            }

        return await self.executor.call(_query, label=f"get_user_profile({user_id})")

    # ---------- items ----------

    async def get_user_items(self, user_id: str) -> QueryResult[List[Item]]:
        """The user's own available items, newest first."""
        user_id = sanitize_user_id(user_id)
        if not user_id:
            return QueryResult(data=[])

        async def _query(session: AsyncSession):
            query = (
                select(ItemRow)
                .where(and_(ItemRow.user_id == user_id, ItemRow.status == AVAILABLE_STATUS))
                .order_by(desc(ItemRow.created_at))
            )
            result = await session.execute(query)
            return self._rows_to_items(result.scalars().all())

        return await self.executor.call(_query, label=f"get_user_items({user_id})")

    async def get_candidate_items(
        self,
        exclude_user_id: Optional[str] = None,
        category_ids: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
        require_embedding: bool = False,
    ) -> QueryResult[List[Item]]:
        """Available items of other users, most recently listed first."""
        exclude_user_id = sanitize_user_id(exclude_user_id)
        categories = sanitize_category_ids(category_ids)

        async def _query(session: AsyncSession):
            conditions = [ItemRow.status == AVAILABLE_STATUS]
            if exclude_user_id:
                conditions.append(ItemRow.user_id != exclude_user_id)
            if categories:
                conditions.append(ItemRow.category_id.in_(categories))
            if require_embedding:
                conditions.append(ItemRow.embedding.is_not(None))
            query = (
                select(ItemRow)
                .where(and_(*conditions))
                .order_by(desc(ItemRow.created_at))
                .limit(max(1, int(limit)))
            )
            result = await session.execute(query)
            return self._rows_to_items(result.scalars().all())

        return await self.executor.call(_query, label="get_candidate_items")

    # ---------- currencies ----------

    async def get_rate_table(self) -> QueryResult[Dict[str, float]]:
        async def _query(session: AsyncSession):
            result = await session.execute(select(Currency.code, Currency.rate))
            table: Dict[str, float] = {}
            for code, rate in result.all():
                if code:
                    table[str(code).upper()] = float(rate)
            return table

        return await self.executor.call(_query, label="get_rate_table")
