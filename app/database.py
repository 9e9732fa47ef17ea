"""
Database connection and session.

Schema source of truth: app.models. On startup, Database.create_all() creates all
tables from the current models. The Database object is built once by create_app()
and lives on app.state; request handlers receive sessions through get_db().
"""
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class Database:
    def __init__(self, url: str):
        self.url = url
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # In-memory SQLite must share one connection across threads (TestClient, dev runs)
                self.engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool)
            else:
                self.engine = create_engine(url, connect_args=connect_args)
        else:
            self.engine = create_engine(url, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        # Import models so Base.metadata has all tables before create_all
        import app.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request):
    database: Database = request.app.state.database
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
