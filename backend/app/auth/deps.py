"""FastAPI dependencies for authentication and theater scoping.

The principal is built from the JWT alone (no DB hit): login, user
storage and revocation belong to the platform's auth service.

Dependencies:
  get_current_principal     → decode JWT, return Principal
  require_permission(...)   → restrict to specific granular permissions
  require_theater_access    → the path's theater must be in the principal's scope
"""

from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token
from app.auth.permissions import ALL_PERMISSIONS, GLOBAL_ROLES, has_permission
from app.tenancy import set_current_theater, validate_theater_id

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass
class Principal:
    """The authenticated caller, as asserted by the token."""
    user_id: str
    role: str
    permissions: list[str] = field(default_factory=list)
    theater_ids: list[str] | None = None  # None = every theater

    def can_access(self, theater_id: str) -> bool:
        if self.role in GLOBAL_ROLES or self.theater_ids is None:
            return True
        return theater_id in self.theater_ids


# ── Core principal dependency ───────────────────────────────

async def get_current_principal(
    token: str = Depends(oauth2_scheme),
) -> Principal:
    """Decode the JWT and return the caller."""
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    role = payload.get("role", "")
    theater_ids = payload.get("theater_ids")
    if theater_ids is None and role not in GLOBAL_ROLES:
        # Theater-bound roles without a theater list can reach nothing
        theater_ids = []

    return Principal(
        user_id=user_id,
        role=role,
        permissions=list(payload.get("permissions", [])),
        theater_ids=theater_ids,
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory — restrict to callers who hold ALL listed permissions.

    Usage:
        @router.post("/{theater_id}/{product_id}")
        async def add_stock(
            principal: Principal = Depends(require_permission("stock.write")),
        ):
            ...
    """
    unknown = sorted(set(perms) - ALL_PERMISSIONS)
    if unknown:
        raise ValueError(f"Unknown permissions: {', '.join(unknown)}")

    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        missing = [p for p in perms if not has_permission(principal.permissions, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return principal

    return _check


# ── Theater scoping ─────────────────────────────────────────

async def require_theater_access(
    theater_id: str = Path(...),
    principal: Principal = Depends(get_current_principal),
) -> str:
    """Return the path's theater id once the caller is allowed to act on it.

    Also records it as the request's theater context for logging.
    """
    try:
        validate_theater_id(theater_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid theater id",
        )
    if not principal.can_access(theater_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No access to this theater",
        )
    set_current_theater(theater_id)
    return theater_id
