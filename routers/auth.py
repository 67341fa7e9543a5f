import logging
import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from config import SECRET_KEY, TOKEN_MAX_AGE_SECONDS
from db import SessionDep
from errors import AuthError, ConflictError, ForbiddenError
from models import User, UserRole, utcnow
from responses import ok
from schemas import LoginData, PasswordChange, ProfileUpdate, RegisterData, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(SECRET_KEY, salt="jonoshongjog-auth")


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User) -> str:
    """
    Store user_id, phone and role in the signed token.
    Example data:
        {"user_id": "5f0c...", "phone": "01712345678", "user_type": "donor"}
    """
    return serializer.dumps(
        {"user_id": str(user.id), "phone": user.phone, "user_type": user.role.value}
    )


def verify_access_token(token: str, max_age_seconds: int = TOKEN_MAX_AGE_SECONDS) -> Optional[dict]:
    """
    Returns the token payload if valid,
    or None if the token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def get_current_user(
    session: SessionDep,
    authorization: Optional[str] = Header(default=None),
) -> User:
    """
    Reads the bearer token from the Authorization header, verifies it
    and looks up the user.
    Raises 401 when no token is sent, 403 when it is invalid or expired.
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Access token required")

    data = verify_access_token(token)
    if not data:
        raise ForbiddenError("Invalid or expired token")

    try:
        user_id = uuid.UUID(data["user_id"])
    except (KeyError, ValueError):
        raise ForbiddenError("Invalid or expired token")

    user = session.get(User, user_id)
    if user is None:
        raise AuthError("User not found for this token")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def require_role(user: User, *roles: UserRole, action: str) -> None:
    if user.role not in roles and user.role != UserRole.ADMIN:
        allowed = " or ".join(role.value for role in roles)
        raise ForbiddenError(f"Only {allowed} accounts can {action}")


def _user_payload(user: User) -> dict:
    data = UserRead.model_validate(user).model_dump(mode="json")
    # the dashboard reads the role as user_type
    data["user_type"] = data.pop("role")
    return data


def _find_user_by_phone(session: SessionDep, phone: str) -> Optional[User]:
    return session.exec(select(User).where(User.phone == phone)).first()


@router.post("/register", status_code=201)
def register(user_in: RegisterData, session: SessionDep):
    """Register a new user with a hashed password and return a token."""
    if _find_user_by_phone(session, user_in.phone):
        raise ConflictError("User with this phone number already exists")

    user = User(
        full_name=user_in.full_name,
        phone=user_in.phone,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        role=UserRole(user_in.user_type),
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        # lost a race with a concurrent registration for the same phone
        session.rollback()
        raise ConflictError("User with this phone number already exists")
    session.refresh(user)
    logger.info("Registered %s user %s", user.role.value, user.id)

    return ok(
        {"user": _user_payload(user), "token": create_access_token(user)},
        "User registered successfully",
    )


@router.post("/login")
def login(payload: LoginData, session: SessionDep):
    user = _find_user_by_phone(session, payload.phone)

    if user is None or not verify_password(payload.password, user.password_hash):
        raise AuthError("Invalid phone number or password")

    return ok(
        {"user": _user_payload(user), "token": create_access_token(user)},
        "Login successful",
    )


@router.get("/profile")
def read_profile(current: CurrentUserDep):
    """Get info about the currently logged-in user."""
    return ok(_user_payload(current))


@router.put("/profile")
def update_profile(update: ProfileUpdate, session: SessionDep, current: CurrentUserDep):
    if update.full_name:
        current.full_name = update.full_name
    if update.email:
        current.email = update.email
    current.updated_at = utcnow()
    session.add(current)
    session.commit()
    session.refresh(current)
    return ok(_user_payload(current), "Profile updated successfully")


@router.post("/change-password")
def change_password(payload: PasswordChange, session: SessionDep, current: CurrentUserDep):
    if not verify_password(payload.current_password, current.password_hash):
        raise AuthError("Current password is incorrect")

    current.password_hash = hash_password(payload.new_password)
    current.updated_at = utcnow()
    session.add(current)
    session.commit()
    return ok(message="Password changed successfully")
