from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from app.core.security import ADMIN_SCOPE, verify_token

# OAuth2 scheme for token authorization
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

async def get_current_admin(token: str = Depends(oauth2_scheme)) -> str:
    """
    Dependency guarding maintenance endpoints such as the orphan sweep.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = verify_token(token)
        username: str = payload.get("sub")
        if username is None or payload.get("scope") != ADMIN_SCOPE:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    return username
