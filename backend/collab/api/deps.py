from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status

from collab.core.security import AuthenticationError, Principal, TokenVerifier, bearer_token, get_token_verifier


def get_current_principal(
    authorization: str | None = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Principal:
    token = bearer_token(authorization)
    try:
        return verifier.verify(token)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token" if token else "Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
