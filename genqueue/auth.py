from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials
import hashlib
import secrets

from genqueue.errors import Unauthorized
from genqueue.models import User

security = HTTPBasic(auto_error=False)

def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()

def authenticate(store, username: str, password: str) -> Optional[User]:
    user = store.get_user_by_username(username)
    # compare even when the user is unknown so timing does not leak usernames
    expected = user.password_hash if user else hash_password(secrets.token_hex(16))
    ok = secrets.compare_digest(hash_password(password), expected)
    return user if (user and ok) else None

def current_user(request: Request, creds: Optional[HTTPBasicCredentials] = Depends(security)) -> User:
    if creds is None:
        raise Unauthorized("Unauthorized")
    user = authenticate(request.app.state.services.store, creds.username, creds.password)
    if user is None:
        raise Unauthorized("Unauthorized")
    return user
