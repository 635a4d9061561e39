from .entity import User
from .repository import UserRepository, normalize_email
from .table import UserTable

__all__ = ["User", "UserRepository", "UserTable", "normalize_email"]
