# Repository pattern: generic CRUD base for table-specific repositories

from sqlrepo.db.repositories.base_repository import Predicate, RemoveRangeStrategy, Repository

__all__ = ["Repository", "RemoveRangeStrategy", "Predicate"]
