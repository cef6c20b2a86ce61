from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..settings import settings
from ..db import get_db
from ..models import AuthSession, User
from ..system import get_system_settings

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

_BAD_LOGIN = "Incorrect handle or password"


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class UserOut(BaseModel):
	uid: str
	username: str
	handle: str
	isAdmin: bool


class RegisterRequest(BaseModel):
	username: str
	handle: str
	password: str


class SetupAdminRequest(RegisterRequest):
	admin_key: str


class RegisterResponse(Token):
	user: UserOut


def user_out(user: User) -> UserOut:
	return UserOut(uid=user.id, username=user.username, handle=user.handle, isAdmin=bool(user.is_admin))


def _bcrypt_input(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_input(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_input(plain_password), hashed_password)


def normalize_handle(raw: str) -> str:
	"""Return the stored form of a handle: trimmed, with exactly one leading ``@``."""
	name = (raw or "").strip()
	if name.startswith("@"):
		name = name[1:]
	if not name:
		raise HTTPException(status_code=400, detail="handle is required")
	return "@" + name


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=1)
	return datetime.now(timezone.utc) + delta


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def start_session(db: Session, user: User) -> Token:
	session_id = uuid.uuid4().hex
	db.add(AuthSession(session_id=session_id, user_id=user.id))
	user.last_activity_at = datetime.utcnow()
	db.commit()
	return Token(access_token=create_access_token({"sub": user.id, "jti": session_id}))


def _resolve_user(token: Optional[str], db: Session) -> Optional[User]:
	if not token:
		return None
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		return None
	user_id: str | None = payload.get("sub")
	jti: str | None = payload.get("jti")
	if user_id is None or jti is None:
		return None
	# The session row must still exist so that logout and account deletion revoke tokens
	row = db.get(AuthSession, jti)
	if not row or row.user_id != user_id:
		return None
	user = db.get(User, user_id)
	if user is None:
		return None
	now = datetime.utcnow()
	row.last_activity_at = now
	user.last_activity_at = now
	db.commit()
	return user


def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
	return _resolve_user(token, db)


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	user = _resolve_user(token, db)
	if user is None:
		raise HTTPException(status_code=401, detail="Could not validate credentials", headers={"WWW-Authenticate": "Bearer"})
	return user


def require_admin(user: User = Depends(get_current_user)) -> User:
	if not user.is_admin:
		raise HTTPException(status_code=403, detail="Administrator access required")
	return user


def authenticate_user(db: Session, handle: str, password: str) -> Optional[User]:
	name = (handle or "").strip()
	if not name:
		return None
	if not name.startswith("@"):
		name = "@" + name
	user = db.query(User).filter(User.handle == name).first()
	if user and verify_password(password, user.password_hash):
		return user
	return None


def _create_user(db: Session, req: RegisterRequest, *, is_admin: bool) -> User:
	username = (req.username or "").strip()
	handle = normalize_handle(req.handle)
	if not username or not req.password:
		raise HTTPException(status_code=400, detail="username and password are required")
	if db.query(User).filter(User.handle == handle).first():
		raise HTTPException(status_code=409, detail="This handle is already taken")
	user = User(username=username, handle=handle, password_hash=hash_password(req.password), is_admin=is_admin)
	db.add(user)
	db.flush()
	return user


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail=_BAD_LOGIN)
	return start_session(db, user)


@router.post("/register", status_code=201, response_model=RegisterResponse)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	system = get_system_settings(db)
	if not system.allow_registration:
		message = system.registration_message or "Registration is currently closed."
		raise HTTPException(status_code=403, detail=message)
	user = _create_user(db, req, is_admin=False)
	token = start_session(db, user)
	logger.info("Registered user %s", user.handle)
	return RegisterResponse(access_token=token.access_token, user=user_out(user))


@router.post("/logout")
async def logout(token: Optional[str] = Depends(oauth2_scheme), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	row = db.get(AuthSession, payload.get("jti"))
	if row is not None:
		db.delete(row)
		db.commit()
	return {"ok": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
	return user_out(user)


def _admin_exists(db: Session) -> bool:
	return db.query(User.id).filter(User.is_admin.is_(True)).first() is not None


@router.get("/setup-admin")
async def setup_admin_status(db: Session = Depends(get_db)):
	return {"available": not _admin_exists(db) and bool(settings.admin_setup_key)}


@router.post("/setup-admin", status_code=201, response_model=RegisterResponse)
async def setup_admin(req: SetupAdminRequest, db: Session = Depends(get_db)):
	if _admin_exists(db):
		raise HTTPException(status_code=403, detail="An administrator has already been set up")
	if not settings.admin_setup_key or req.admin_key != settings.admin_setup_key:
		raise HTTPException(status_code=403, detail="Invalid administrator key")
	user = _create_user(db, req, is_admin=True)
	token = start_session(db, user)
	logger.info("First administrator %s created", user.handle)
	return RegisterResponse(access_token=token.access_token, user=user_out(user))
