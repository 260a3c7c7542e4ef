import hashlib
import hmac
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from citeguard.core.auth import Principal, PrincipalType
from citeguard.core.config import Settings, get_settings
from citeguard.services.repository import MachineCredentialRecord, RepositoryUnavailableError, get_repository

READ_SCOPES = frozenset({"jobs:read", "citations:read", "compliance:read"})
WRITE_SCOPES = frozenset({"jobs:write", "citations:write", "compliance:write", "revisions:write"})

# Plain signed-in users reach none of the hygiene tooling.
ROLE_SCOPES: dict[str, frozenset[str]] = {
    "user": frozenset(),
    "editor": READ_SCOPES,
    "admin": READ_SCOPES | WRITE_SCOPES,
}


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="human auth requires bearer token")
    return await _authenticate_human(settings=settings, token=token)


async def get_operator_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    """Scheduler module headers win over a bearer token when both are sent."""
    if x_api_key and x_module_id:
        return await _authenticate_module(repository=repository, module_id=x_module_id, api_key=x_api_key)

    token = _bearer_token(authorization)
    if token is not None:
        return await _authenticate_human(settings=settings, token=token)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"operator auth requires bearer token or {settings.api_key_header} and X-Module-Id",
    )


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip()


async def _authenticate_module(*, repository: Any, module_id: str, api_key: str) -> Principal:
    try:
        credentials = await repository.get_machine_credentials(module_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    matched = _match_credential(credentials, api_key)
    if matched is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    return Principal(
        principal_type=PrincipalType.MACHINE,
        subject=matched.module_id,
        scopes=frozenset(matched.scopes),
        actor_id=matched.module_db_id,
    )


def _match_credential(
    credentials: list[MachineCredentialRecord],
    api_key: str,
) -> MachineCredentialRecord | None:
    key_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    for record in credentials:
        if hmac.compare_digest(record.key_hash, key_hash):
            return record
    return None


async def _authenticate_human(*, settings: Settings, token: str) -> Principal:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Supabase auth is not configured")

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_human_role(user)
    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        scopes=ROLE_SCOPES.get(role, ROLE_SCOPES["user"]),
        role=role,
        actor_id=user_id,
    )


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers={"Authorization": f"Bearer {token}", "apikey": supabase_anon_key})
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Supabase auth verification failed")
    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    # user_metadata is writable by the user themselves, so only app_metadata grants roles.
    app_metadata = user.get("app_metadata")
    role = app_metadata.get("role") if isinstance(app_metadata, dict) else None
    return role if isinstance(role, str) and role in ROLE_SCOPES else "user"
