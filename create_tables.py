"""
Create base tables from SQLAlchemy models.
Run this on a fresh database when not using `alembic upgrade head`.
"""
from app.database import engine, Base
from app import models  # noqa: F401 - register all models with Base

Base.metadata.create_all(bind=engine)
print("Tables created (or already exist): " + ", ".join(sorted(Base.metadata.tables)))
