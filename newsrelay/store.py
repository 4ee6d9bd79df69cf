"""
Article and user persistence.

Articles are keyed by URL. ``upsert`` writes content columns only when the row
is created and rewrites the ML columns on every call, inside one transaction.
"""
from typing import Optional

import structlog
from sqlalchemy import exists, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .models import Article, User
from .schema import NormalizedArticle

log = structlog.get_logger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def is_systemic_db_error(exc: BaseException) -> bool:
    """True for connectivity failures that should fail the whole job"""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class ArticleStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._sf = session_factory

    def _insert(self, session):
        dialect = session.bind.dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"unsupported database dialect: {dialect}") from None

    async def exists(self, url: str) -> bool:
        async with self._sf() as s:
            return bool(await s.scalar(select(exists().where(Article.url == url))))

    async def upsert(self, article: NormalizedArticle) -> bool:
        """Insert-or-refresh by URL; returns True when a new row was created"""
        if not article.url:
            raise ValueError("article has no url")
        async with self._sf() as s:
            async with s.begin():
                insert = self._insert(s)
                stmt = (
                    insert(Article)
                    .values(**article.content_fields(), **article.ml_fields())
                    .on_conflict_do_nothing(index_elements=[Article.url])
                    .returning(Article.id)
                )
                inserted = (await s.execute(stmt)).scalar_one_or_none() is not None
                if not inserted:
                    await s.execute(
                        update(Article)
                        .where(Article.url == article.url)
                        .values(**article.ml_fields())
                    )
        return inserted

    async def get(self, article_id: int) -> Optional[Article]:
        async with self._sf() as s:
            return await s.get(Article, article_id)

    async def get_by_url(self, url: str) -> Optional[Article]:
        async with self._sf() as s:
            return (await s.execute(select(Article).where(Article.url == url))).scalar_one_or_none()

    async def ping(self):
        async with self._sf() as s:
            await s.execute(select(1))

    async def count(self) -> int:
        async with self._sf() as s:
            return int(await s.scalar(select(func.count(Article.id))) or 0)


class UserStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._sf = session_factory

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._sf() as s:
            return await s.get(User, str(user_id))
