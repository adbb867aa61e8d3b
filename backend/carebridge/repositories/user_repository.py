# backend/carebridge/repositories/user_repository.py
"""
User Repository for the CareBridge Platform

Role and active-flag checks live on the User model; services only need the
primary-key lookup inherited from BaseRepository.
"""

from sqlalchemy.orm import Session

from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)
