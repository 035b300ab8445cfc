"""
Database configuration and models
PostgreSQL in production, any SQLAlchemy URL (SQLite in tests) works
"""

import logging
from datetime import datetime
from typing import Any, Dict, Generator, Optional

from fastapi import Request
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from .config import Settings
from .models.authorization_models import ResourceKind, ResourceURI

logger = logging.getLogger(__name__)

Base = declarative_base()

# text[] on PostgreSQL, JSON list elsewhere
PolicyColumnType = ARRAY(Text).with_variant(JSON(), "sqlite")


# Database Models
class User(Base):  # type: ignore[valid-type, misc]
    """User model with secure password storage"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)  # Argon2id hash
    must_reset_password = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    deals = relationship("Deal", back_populates="author")

    def uri(self) -> ResourceURI:
        return ResourceURI(ResourceKind.USER, str(self.id))

    def to_non_secure(self) -> Dict[str, Any]:
        """Fields any authorized caller may see"""
        return {"id": self.id, "username": self.username}


class Game(Base):  # type: ignore[valid-type, misc]
    """A game deals can be listed for"""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    image_url = Column(Text, nullable=True)

    deals = relationship("Deal", back_populates="game")

    def uri(self) -> ResourceURI:
        return ResourceURI(ResourceKind.GAME, str(self.id))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "image_url": self.image_url}


class Deal(Base):  # type: ignore[valid-type, misc]
    """A time limited price for a game"""

    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    game_id = Column(Integer, ForeignKey("games.id"), nullable=False)
    image_url = Column(Text, nullable=True)
    link = Column(Text, nullable=False)
    price = Column(Integer, nullable=False)  # cents
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False)

    author = relationship("User", back_populates="deals")
    game = relationship("Game", back_populates="deals")

    def uri(self) -> ResourceURI:
        return ResourceURI(ResourceKind.DEAL, str(self.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "game_id": self.game_id,
            "image_url": self.image_url,
            "link": self.link,
            "price": self.price,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


class AuthorizationPolicy(Base):  # type: ignore[valid-type, misc]
    """One persisted policy tuple under a policy type ("p" or "g")"""

    __tablename__ = "authorization_policies"

    id = Column(Integer, primary_key=True, index=True)
    logical_name = Column(String(255), nullable=False)
    policy_type = Column(String(16), nullable=False, index=True)
    policy = Column(PolicyColumnType, nullable=False)

    def uri(self) -> ResourceURI:
        return ResourceURI(ResourceKind.AUTHORIZATION_POLICY, self.logical_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "logical_name": self.logical_name,
            "policy_type": self.policy_type,
            "policy": list(self.policy),
        }


def build_engine(settings: Settings, **kwargs: Any) -> Engine:
    """Create the SQLAlchemy engine for the configured database URL"""
    options: Dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_url.startswith("postgresql"):
        options.update(
            {
                "pool_size": 10,
                "max_overflow": 20,
                "pool_recycle": 3600,
                "connect_args": {"connect_timeout": 10, "options": "-c application_name=gamedeals"},
            }
        )
    options.update(kwargs)
    return create_engine(settings.database_url, **options)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI endpoints.

    Yields:
        SQLAlchemy Session bound to the application's engine.

    Note:
        Session is automatically closed when the request completes.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def create_tables(engine: Engine) -> None:
    """Create database tables if they don't exist."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        raise


def check_database_health(session_factory: sessionmaker) -> bool:
    """Check database connectivity for health checks"""
    db: Optional[Session] = None
    try:
        db = session_factory()
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
    finally:
        if db is not None:
            db.close()
