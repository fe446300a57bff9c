import os
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from tinylink.dependencies import get_store
from tinylink.records import User
from tinylink.store import LinkStore

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))

if not SECRET_KEY:
    raise RuntimeError("SECRET_KEY is not set")

# Tokens are issued by the external identity provider; tokenUrl only feeds the docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_identity(token: str | None) -> str | None:
    """External identity reference carried in the token's ``sub``, if valid."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None


def get_identity(token: str | None = Depends(oauth2_scheme)) -> str:
    identity = decode_identity(token)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def get_current_user(identity: str = Depends(get_identity), store: LinkStore = Depends(get_store)) -> User:
    user = store.get_user_by_external_id(identity)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_optional_user(token: str | None = Depends(oauth2_scheme), store: LinkStore = Depends(get_store)) -> User | None:
    # No token, a bad token, or an unregistered identity all mean anonymous
    identity = decode_identity(token)
    if identity is None:
        return None
    return store.get_user_by_external_id(identity)
