"""
Database connection and session management.
Provides SQLAlchemy engine, session factory, and base class.
"""
import logging
import os
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from prometheus_client import Counter
from core.config import settings

logger = logging.getLogger(__name__)

db_queries_total = Counter(
    "db_queries_total",
    "Total number of database statements executed",
    labelnames=["instance"]
)

# Production connection pool settings
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_PRE_PING = os.getenv("DB_POOL_PRE_PING", "true").lower() == "true"
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))  # 1 hour


def build_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite connections are shared with the threadpool that runs store
    calls, so thread checks are disabled there; every other backend gets
    the production pool settings.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=settings.log_level == "DEBUG"
        )

    return create_engine(
        database_url,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_pre_ping=DB_POOL_PRE_PING,
        pool_recycle=DB_POOL_RECYCLE,
        echo=settings.log_level == "DEBUG"
    )


engine = build_engine(settings.database_url)


@event.listens_for(Engine, "before_cursor_execute")
def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Count every statement sent to the database."""
    db_queries_total.labels(instance="api").inc()


# Create SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize database by creating all tables.
    Should be called once during application setup.
    """
    from db import models  # noqa: F401  registers models with Base
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def seed_db() -> None:
    """
    Seed database with demo data for local development.

    Creates three users (password 'password123'), one listing and a room
    where all three are JOINED members. Does nothing when users exist.
    """
    from db.models import User, Listing, UserRole
    from db.repository import ChatRepository
    from core.security import hash_password

    db = SessionLocal()
    try:
        existing_users = db.query(User).count()
        if existing_users > 0:
            logger.info(f"Database already seeded ({existing_users} users exist)")
            return

        password_hash = hash_password("password123")
        users = [
            User(fullname="Demo Buyer", email="buyer@example.com", phone="0900000001",
                 password_hash=password_hash, primary_role=UserRole.BUYER),
            User(fullname="Demo Agent", email="agent@example.com", phone="0900000002",
                 password_hash=password_hash, primary_role=UserRole.AGENT),
            User(fullname="Demo Seller", email="seller@example.com", phone="0900000003",
                 password_hash=password_hash, primary_role=UserRole.SELLER),
        ]
        db.add_all(users)
        db.flush()

        listing = Listing(title="Riverside apartment, 2 bedrooms", price=250000, owner_id=users[2].user_id)
        db.add(listing)
        db.commit()

        repository = ChatRepository(db)
        room = repository.create_room(
            member_ids=[user.user_id for user in users],
            created_by=users[0].user_id,
            listing_id=listing.listing_id
        )
        logger.info(f"Database seeded with {len(users)} users and room {room.room_id}")

    except Exception as e:
        db.rollback()
        logger.error(f"Error seeding database: {e}")
        raise
    finally:
        db.close()
