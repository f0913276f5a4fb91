import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AuthUser, AuthSession
from ..schemas import Identity
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

GUEST_USERNAMES = ("guest", "guests")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


_users: Dict[str, str] = {}


def _truncate_for_bcrypt(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_truncate_for_bcrypt(password))


def _ensure_seed_user() -> None:
	username = settings.seed_username
	password = settings.seed_password_plain
	if username and password and username not in _users:
		_users[username] = hash_password(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_truncate_for_bcrypt(plain_password), hashed_password)


def _identity_for(username: str, row: Optional[AuthUser] = None) -> Identity:
	if row is None:
		return Identity(id=username, name=username)
	return Identity(id=row.username, name=row.display_name or row.username, email=row.email)


def authenticate_user(db: Session, username: str, password: str) -> Optional[Identity]:
	# Guest users (case-insensitive) need no password
	if username.lower() in GUEST_USERNAMES:
		return _identity_for(username.lower())

	# DB-backed users first
	user_row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if user_row and verify_password(password, user_row.password_hash):
		return _identity_for(username, user_row)
	# Fallback to seed in-memory user for dev convenience
	_ensure_seed_user()
	hashed = _users.get(username)
	if hashed and verify_password(password, hashed):
		return _identity_for(username)
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	"""Return a JWT expiry timestamp from the configured lifetime, capped within datetime bounds."""
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	identity = authenticate_user(db, form_data.username, form_data.password)
	if not identity:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	# New server-side session id (jti)
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": identity.id, "jti": session_id})
	try:
		db.merge(AuthSession(session_id=session_id, username=identity.id))
		db.commit()
	except SQLAlchemyError as exc:
		db.rollback()
		logger.error("Could not persist auth session: %s", exc)
		raise HTTPException(status_code=503, detail="Could not create session")
	return Token(access_token=access_token)


def get_current_identity(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Identity:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		username: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if username is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# The session row must still exist so revoked tokens are rejected
	try:
		row = db.get(AuthSession, jti)
		if not row or row.username != username:
			raise credentials_exception
		row.last_activity_at = datetime.utcnow()
		db.add(row)
		db.commit()
		user_row = db.get(AuthUser, username)
	except SQLAlchemyError:
		# On DB errors, fail closed
		db.rollback()
		raise credentials_exception
	return _identity_for(username, user_row)


@router.get("/me", response_model=Identity)
async def me(identity: Identity = Depends(get_current_identity)):
	return identity


@router.post("/logout", status_code=204)
async def logout(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		raise HTTPException(status_code=401, detail="Could not validate credentials")
	row = db.get(AuthSession, payload.get("jti"))
	if row:
		db.delete(row)
		db.commit()


class RegisterRequest(BaseModel):
	username: str
	password: str
	email: str
	name: Optional[str] = None


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	username = (req.username or "").strip()
	password = req.password or ""
	email = (req.email or "").strip()
	name = (req.name or "").strip() or None
	if not username or not password:
		raise HTTPException(status_code=400, detail="username and password are required")
	if not email:
		raise HTTPException(status_code=400, detail="email is required")
	if len(username) < 3 or len(username) > 128:
		raise HTTPException(status_code=400, detail="username must be 3-128 characters")
	if username.lower() in GUEST_USERNAMES:
		raise HTTPException(status_code=400, detail="username is reserved")
	existing = db.query(AuthUser).filter(AuthUser.username == username).first()
	if existing:
		raise HTTPException(status_code=409, detail="username already exists")
	row = AuthUser(username=username, password_hash=hash_password(password), email=email, display_name=name)
	db.add(row)
	db.commit()
	return {"ok": True}
