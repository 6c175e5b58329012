"""
PostgreSQL + pgvector implementation of :class:`VectorStore`.

Nearest-neighbour search is pushed down to the database with pgvector's
cosine-distance operator (``<=>``); thresholding, ordering and the result cap
all happen in SQL.  Every operation opens its own short-lived session, so a
single instance is safe to share across concurrent requests.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waypoint.exceptions import StoreError
from waypoint.models.database_models import CONTENT_TYPES, LearningPathTemplate
from waypoint.models.records import ContentItem, CoverageStats, TemplateMatch, TemplateRecord
from waypoint.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


def _vector_literal(vector: List[float]) -> str:
    # pgvector expects the literal string "[a,b,c,...]"
    return "[" + ",".join(f"{v:.8f}" for v in vector) + "]"


def _to_record(row: Any) -> TemplateRecord:
    """Convert an ORM row or a result mapping into a validated record."""
    get = row.get if hasattr(row, "get") else lambda k: getattr(row, k, None)
    return TemplateRecord(
        template_id=get("template_id"),
        name=get("template_name"),
        description=get("template_description"),
        difficulty=get("difficulty_level") or "beginner",
        duration_weeks=get("estimated_duration_weeks") or 0,
        target_skills=get("target_skills") or [],
        target_goals=get("target_goals") or [],
        usage_count=get("usage_count") or 0,
        path_data=get("path_data") or {},
        path_embedding=get("path_embedding"),
        embedding_model=get("embedding_model"),
        created_at=get("created_at"),
    )


_TEMPLATE_SEARCH_SQL = text(
    """
    SELECT
        t.template_id,
        t.template_name,
        t.template_description,
        t.difficulty_level,
        t.estimated_duration_weeks,
        t.target_skills,
        t.target_goals,
        t.usage_count,
        t.path_data,
        t.embedding_model,
        t.created_at,
        1 - (t.path_embedding <=> CAST(:embedding AS vector)) AS similarity
    FROM learning_path_templates t
    WHERE t.path_embedding IS NOT NULL
      AND t.embedding_model = :model
      AND (
            CAST(:threshold AS double precision) <= 0
            OR 1 - (t.path_embedding <=> CAST(:embedding AS vector))
               >= CAST(:threshold AS double precision)
      )
    ORDER BY
        t.path_embedding <=> CAST(:embedding AS vector),
        t.usage_count DESC,
        t.template_id
    LIMIT :match_limit
    """
)

_INCREMENT_USAGE_SQL = text(
    """
    UPDATE learning_path_templates
    SET usage_count = usage_count + 1,
        updated_at = now()
    WHERE template_id = :template_id
    RETURNING usage_count
    """
)


class PgVectorStore(VectorStore):
    """Vector store backed by the application database."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session, commit on success, and map driver errors to StoreError."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except (SQLAlchemyError, OSError) as exc:
                await session.rollback()
                logger.error("Store operation %s failed: %s", operation, exc)
                raise StoreError(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Content embeddings
    # ------------------------------------------------------------------

    async def fetch_pending_content(self, model: str) -> List[ContentItem]:
        items: List[ContentItem] = []
        async with self._session("fetch_pending_content") as db:
            for content_type, (cls, pk) in CONTENT_TYPES.items():
                stmt = (
                    select(cls)
                    .where(
                        or_(
                            cls.content_embedding.is_(None),
                            cls.embedding_model.is_(None),
                            cls.embedding_model != model,
                            and_(
                                cls.embedded_at.is_not(None),
                                cls.updated_at > cls.embedded_at,
                            ),
                        )
                    )
                    .order_by(getattr(cls, pk))
                )
                rows = (await db.execute(stmt)).scalars().all()
                for row in rows:
                    items.append(
                        ContentItem(
                            content_type=content_type,
                            content_id=getattr(row, pk),
                            text_content=row.search_text(),
                            last_updated=row.updated_at,
                            embedding_model=row.embedding_model,
                        )
                    )
        logger.debug("Found %d content items needing embeddings", len(items))
        return items

    async def upsert_embedding(
        self, content_type: str, content_id: str, vector: List[float], model: str
    ) -> bool:
        if content_type not in CONTENT_TYPES:
            raise StoreError(f"Unknown content type: {content_type}")
        cls, pk = CONTENT_TYPES[content_type]
        stmt = (
            update(cls)
            .where(getattr(cls, pk) == int(content_id))
            .values(
                content_embedding=vector,
                embedding_model=model,
                embedded_at=func.now(),
                # keep the authored timestamp; the write is not a content edit
                updated_at=cls.updated_at,
            )
        )
        async with self._session("upsert_embedding") as db:
            result = await db.execute(stmt)
        return result.rowcount > 0

    async def coverage(self, model: str) -> List[CoverageStats]:
        stats: List[CoverageStats] = []
        async with self._session("coverage") as db:
            for content_type, (cls, _pk) in CONTENT_TYPES.items():
                current = and_(
                    cls.content_embedding.is_not(None), cls.embedding_model == model
                )
                stmt = select(
                    func.count(),
                    func.count().filter(current),
                    func.max(cls.embedded_at).filter(current),
                ).select_from(cls)
                total, embedded, latest = (await db.execute(stmt)).one()
                stats.append(
                    CoverageStats(
                        content_type=content_type,
                        total_items=total or 0,
                        items_with_embeddings=embedded or 0,
                        latest_embedding_date=latest,
                    )
                )
        return stats

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def search_templates(
        self,
        query_vector: List[float],
        similarity_threshold: float,
        match_limit: int,
        model: str,
    ) -> List[TemplateMatch]:
        params: Dict[str, Any] = {
            "embedding": _vector_literal(query_vector),
            "model": model,
            "threshold": similarity_threshold,
            "match_limit": match_limit,
        }
        async with self._session("search_templates") as db:
            rows = (await db.execute(_TEMPLATE_SEARCH_SQL, params)).mappings().all()

        return [
            TemplateMatch(template=_to_record(row), similarity=float(row["similarity"]))
            for row in rows
        ]

    async def insert_template(self, template: TemplateRecord) -> TemplateRecord:
        row = LearningPathTemplate(
            template_id=template.template_id,
            template_name=template.name,
            template_description=template.description,
            difficulty_level=template.difficulty,
            estimated_duration_weeks=template.duration_weeks,
            target_skills=sorted(template.target_skills),
            target_goals=sorted(template.target_goals),
            usage_count=template.usage_count,
            path_data=template.path_data,
            path_embedding=template.path_embedding,
            embedding_model=template.embedding_model,
        )
        async with self._session("insert_template") as db:
            db.add(row)
            await db.flush()
            await db.refresh(row)
            stored = _to_record(row)
        logger.info("Saved template %s (%s)", stored.template_id, stored.name)
        return stored

    async def get_template(self, template_id: str) -> Optional[TemplateRecord]:
        async with self._session("get_template") as db:
            row = await db.get(LearningPathTemplate, str(template_id))
            return _to_record(row) if row is not None else None

    async def increment_usage(self, template_id: str) -> int:
        async with self._session("increment_usage") as db:
            result = await db.execute(_INCREMENT_USAGE_SQL, {"template_id": str(template_id)})
            new_count = result.scalar_one_or_none()
        return new_count or 0

    async def popular_templates(self, limit: int) -> List[TemplateRecord]:
        stmt = (
            select(LearningPathTemplate)
            .order_by(LearningPathTemplate.usage_count.desc(), LearningPathTemplate.template_id)
            .limit(limit)
        )
        async with self._session("popular_templates") as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_to_record(r) for r in rows]

    async def count_templates(self) -> int:
        async with self._session("count_templates") as db:
            return (
                await db.execute(select(func.count()).select_from(LearningPathTemplate))
            ).scalar_one()

    async def stale_templates(self, model: str) -> List[TemplateRecord]:
        stmt = select(LearningPathTemplate).where(
            or_(
                LearningPathTemplate.path_embedding.is_(None),
                LearningPathTemplate.embedding_model.is_(None),
                LearningPathTemplate.embedding_model != model,
            )
        )
        async with self._session("stale_templates") as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_to_record(r) for r in rows]

    async def update_template_embedding(
        self, template_id: str, vector: List[float], model: str
    ) -> bool:
        stmt = (
            update(LearningPathTemplate)
            .where(LearningPathTemplate.template_id == str(template_id))
            .values(path_embedding=vector, embedding_model=model)
        )
        async with self._session("update_template_embedding") as db:
            result = await db.execute(stmt)
        return result.rowcount > 0
