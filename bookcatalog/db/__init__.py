from bookcatalog.db.database import PostgresRepository, create_pool
from bookcatalog.db.migrations import MigrationEngine

__all__ = ["MigrationEngine", "PostgresRepository", "create_pool"]
