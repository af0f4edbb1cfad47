from app.db.database import Base, get_db, AsyncSessionLocal

__all__ = ["Base", "get_db", "AsyncSessionLocal"]
