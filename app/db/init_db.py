"""
Create all tables directly (local development without Alembic).
Run: python -m app.db.init_db
"""
from app.db.session import engine
from app.db.base import Base
from app.db import models  # noqa: F401


def init_db():
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    init_db()
