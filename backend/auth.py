from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from config import JWT_SECRET, JWT_ISS, JWT_AUD, JWT_EXPIRE_MIN
from db import get_session
from models import User

pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")

def hash_password(raw: str) -> str:
    return pwd.hash(raw)

def verify_password(raw: str, hashed: str) -> bool:
    return pwd.verify(raw, hashed)

def make_token(email: str, remember: bool = False) -> str:
    # short-lived unless the client asked to be remembered
    minutes = JWT_EXPIRE_MIN if remember else 120
    now = datetime.now(timezone.utc)
    claims = {
        "sub": email,
        "iss": JWT_ISS,
        "aud": JWT_AUD,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")

def parse_token(token: str) -> str:
    """Return the subject (user email) of a valid token; raises JWTError otherwise."""
    claims = jwt.decode(token, JWT_SECRET, algorithms=["HS256"], audience=JWT_AUD, issuer=JWT_ISS)
    return claims["sub"]

def authenticate(session: Session, email: str, password: str) -> Optional[User]:
    u = session.query(User).filter_by(email=email).first()
    if not u or not verify_password(password, u.password_hash):
        return None
    return u

def authed(authorization: str = Header(None), session: Session = Depends(get_session)) -> User:
    """Resolve the bearer token to a user. Downstream handlers trust the result as-is."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        email = parse_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = session.query(User).filter_by(email=email).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user
