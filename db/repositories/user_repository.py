from datetime import datetime
from sqlalchemy.orm import Session
from db.models.user import User
from db.models.session import UserSession


class UserRepository:
    """Credential store: the `users` and `sessions` tables."""

    def __init__(self, db: Session):
        self.db = db

    def create_user(self, user: User) -> User:
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_user_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email.lower()).first()

    def get_user_by_id(self, user_id: int) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_square_customer_id(self, customer_id: str) -> User | None:
        return self.db.query(User).filter(User.square_customer_id == customer_id).first()

    def update_user(self, user_id: int, update_data: dict) -> User | None:
        """Update user with dict of fields"""
        existing_user = self.get_user_by_id(user_id)
        if not existing_user:
            return None
        for key, value in update_data.items():
            if hasattr(existing_user, key):
                setattr(existing_user, key, value)
        self.db.commit()
        self.db.refresh(existing_user)
        return existing_user

    def create_session(self, session: UserSession) -> UserSession:
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def get_session_by_token(self, token: str) -> UserSession | None:
        return self.db.query(UserSession).filter(UserSession.token == token).first()

    def touch_session(self, session: UserSession, used_at: datetime) -> UserSession:
        session.last_used_at = used_at
        self.db.commit()
        self.db.refresh(session)
        return session

    def expire_session(self, session: UserSession, expired_at: datetime) -> UserSession:
        session.expires_at = expired_at
        self.db.commit()
        self.db.refresh(session)
        return session

    def rollback(self):
        self.db.rollback()
