from typing import Any, Optional

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from common import auth
from common.app_factory import create_service_app
from common.audit_log import AuditLogRecorder
from common.config import get_settings
from common.database import get_db
from common.dependencies import get_current_user, require_admin
from common.models import RoleEnum, User
from common.rate_limit import AUTH_LIMIT, READ_LIMIT, WRITE_LIMIT, limiter
from common.schemas import EquipmentLogPage, Token, UserCreate, UserRead, UserUpdate

settings = get_settings()
app = create_service_app("Users Service", "users")


def _get_user_for(db: Session, username: str, current_user: User) -> User:
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if current_user.role != RoleEnum.ADMIN and current_user.username != username:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return user


@app.post("/users/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_LIMIT)
def register_user(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    if db.query(User).filter((User.username == user_in.username) | (User.email == user_in.email)).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")

    # The first admin may sign themselves up; after that only admins hand out elevated roles.
    target_role = user_in.role
    admins_exist = db.query(User).filter(User.role == RoleEnum.ADMIN).first() is not None
    if target_role != RoleEnum.BASIC and admins_exist:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can assign elevated roles")

    user = User(
        name=user_in.name,
        username=user_in.username,
        email=user_in.email,
        role=target_role,
        hashed_password=auth.get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@app.post("/users/login", response_model=Token)
@limiter.limit(AUTH_LIMIT)
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
    return Token(access_token=auth.create_user_token(user))


@app.get("/users/me", response_model=UserRead)
@limiter.limit(READ_LIMIT)
def read_me(request: Request, current_user: User = Depends(get_current_user)) -> User:
    return current_user


@app.get("/users", response_model=list[UserRead])
@limiter.limit(READ_LIMIT)
def list_users(request: Request, _: User = Depends(require_admin), db: Session = Depends(get_db)) -> list[User]:
    return db.query(User).order_by(User.username).all()


@app.get("/users/{username}", response_model=UserRead)
@limiter.limit(READ_LIMIT)
def get_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    return _get_user_for(db, username, current_user)


@app.put("/users/{username}", response_model=UserRead)
@limiter.limit(WRITE_LIMIT)
def update_user(
    request: Request,
    username: str,
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    user = _get_user_for(db, username, current_user)

    if user_update.email and user_update.email != user.email:
        if db.query(User).filter(User.email == user_update.email, User.id != user.id).first():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")
        user.email = user_update.email
    if user_update.name:
        user.name = user_update.name
    if user_update.role and user_update.role != user.role:
        if current_user.role != RoleEnum.ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can change roles")
        user.role = user_update.role
    if user_update.password:
        user.hashed_password = auth.get_password_hash(user_update.password)

    db.commit()
    db.refresh(user)
    return user


@app.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
def delete_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    user = _get_user_for(db, username, current_user)
    # Their log entries stay; user_id is nulled by the foreign key.
    db.delete(user)
    db.commit()


@app.get("/users/{username}/logs", response_model=EquipmentLogPage)
@limiter.limit(READ_LIMIT)
def user_activity(
    request: Request,
    username: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Equipment log entries written by one user, newest first."""
    user = _get_user_for(db, username, current_user)
    limit = limit or settings.log_page_size
    return AuditLogRecorder(db).list_all({"user_id": user.id}, limit=limit, offset=(page - 1) * limit)
