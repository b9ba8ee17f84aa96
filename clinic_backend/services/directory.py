from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from clinic_backend.models.user import User, UserRole


def find_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f'User with ID {user_id} not found')
    return user


def find_user_or_none(db: Session, user_id: int | None) -> User | None:
    if user_id is None:
        return None
    return db.query(User).filter(User.id == user_id).first()


def find_doctors(db: Session, active_only: bool = True) -> list[User]:
    query = db.query(User).filter(User.role == UserRole.DOCTOR)
    if active_only:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.id.asc()).all()
