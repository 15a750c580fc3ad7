from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from autopay_bridge.config import get_settings

settings = get_settings()
DATABASE_URL = settings.database_url

engine = create_engine(
    DATABASE_URL,
    echo=settings.database_echo,
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()


def get_db():
    """Request-scoped session; one per webhook delivery."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
