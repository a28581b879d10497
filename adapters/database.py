# adapters/database.py - PostgreSQL catalog implementation with Domain Models
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, String, Text, and_, func, select, text, true
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from config import settings
from domain.models import CatalogRepository, ClauseOp, Location, Predicate

logger = logging.getLogger(__name__)


# SQLAlchemy Models
class Base(DeclarativeBase):
    pass

class LocationModel(Base):
    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    address: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    keywords: Mapped[List[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    price_range: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    filters: Mapped[List[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    photos: Mapped[List[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    tips: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    social_media: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    media_links: Mapped[List[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    hours: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def to_domain(self) -> Location:
        return Location(
            id=self.id,
            name=self.name,
            address=self.address,
            description=self.description,
            category=self.category,
            postal_code=self.postal_code,
            keywords=list(self.keywords or []),
            price_range=self.price_range,
            filters=list(self.filters or []),
            photos=list(self.photos or []),
            tips=self.tips,
            social_media=self.social_media,
            media_links=list(self.media_links or []),
            hours=dict(self.hours or {}),
        )

    def apply(self, location: Location) -> None:
        for name, value in location.to_dict().items():
            if name != "id":
                setattr(self, name, value)


def predicate_to_sql(predicate: Predicate):
    """Translate a compiled predicate into a WHERE clause"""
    conditions = []
    for clause in predicate.clauses:
        column = getattr(LocationModel, clause.field)
        if clause.op is ClauseOp.EQUALS:
            conditions.append(column == clause.value)
        elif clause.op is ClauseOp.ANY_OF:
            conditions.append(column.overlap(sorted(clause.value)))
        else:
            conditions.append(column.contains(sorted(clause.value)))
    return and_(*conditions) if conditions else true()


def build_find_statement(predicate: Predicate):
    return (
        select(LocationModel)
        .where(predicate_to_sql(predicate))
        .order_by(LocationModel.created_at, LocationModel.id)
    )


# Database Engine and Session
engine = None
SessionLocal = None

async def init_db():
    """Initialize database connection and create tables"""
    global engine, SessionLocal

    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True
    )

    SessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized successfully")
    return SessionLocal

async def close_db():
    global engine
    if engine is not None:
        await engine.dispose()
        engine = None


class SqlCatalogRepository(CatalogRepository):
    """Catalog backed by the locations table"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def find(self, predicate: Predicate) -> List[Location]:
        async with self.session_factory() as session:
            result = await session.execute(build_find_statement(predicate))
            return [model.to_domain() for model in result.scalars().all()]

    async def find_by_id(self, location_id: str) -> Optional[Location]:
        async with self.session_factory() as session:
            model = await session.get(LocationModel, location_id)
            return model.to_domain() if model else None

    async def save(self, location: Location) -> Location:
        async with self.session_factory() as session:
            model = None
            if location.id is not None:
                model = await session.get(LocationModel, location.id)
            if model is None:
                model = LocationModel(id=location.id or str(uuid.uuid4()))
                session.add(model)
            model.apply(location)
            await session.commit()
            return model.to_domain()

    async def delete(self, location_id: str) -> bool:
        async with self.session_factory() as session:
            model = await session.get(LocationModel, location_id)
            if model is None:
                return False
            await session.delete(model)
            await session.commit()
            return True

    async def health_check(self) -> bool:
        """Check if database is healthy"""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
