"""PostgreSQL persistence (SQLAlchemy async + pgvector)."""
