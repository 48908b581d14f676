# FILE: atelier/db.py
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Database path: ./data/atelier.db relative to project root
# Override with ATELIER_DATABASE_URL env var if needed
DATABASE_URL = os.getenv("ATELIER_DATABASE_URL", "sqlite:///./data/atelier.db")


def make_engine(url: str = DATABASE_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, echo=False)


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency that yields a DB session and closes it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables. Call once at startup."""
    # Import models so Base.metadata knows about them
    from atelier.sessions import models  # noqa: F401
    if bind is None and DATABASE_URL.startswith("sqlite:///./"):
        os.makedirs(os.path.dirname(DATABASE_URL[len("sqlite:///"):]) or ".", exist_ok=True)
    Base.metadata.create_all(bind=bind or engine)
