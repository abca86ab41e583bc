import json
import os
from pathlib import Path
from typing import Dict, Optional

import jwt
from jwt.algorithms import RSAAlgorithm
from fastapi import Header, HTTPException

ROLE_ORDER = {"viewer": 0, "editor": 1, "admin": 2}


def _require_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    return authorization.split(" ", 1)[1].strip()


def _settings() -> Dict[str, Optional[str]]:
    # Read at call time so tests can flip env vars between requests
    return {
        "api_token": os.getenv("API_TOKEN"),
        "hs256_secret": os.getenv("OIDC_HS256_SECRET"),
        "issuer": os.getenv("OIDC_ISSUER"),
        "audience": os.getenv("OIDC_AUDIENCE"),
        "jwks_url": os.getenv("OIDC_JWKS_URL"),
        "jwks_inline": os.getenv("OIDC_JWKS"),
        "jwks_path": os.getenv("OIDC_JWKS_PATH"),
    }


def _static_role() -> str:
    role = os.getenv("API_ROLE", "admin").strip().lower()
    return role if role in ROLE_ORDER else "admin"


def _extract_roles(claims: dict) -> set:
    roles = set()
    for key in ("roles", "role", "scope", "permissions"):
        val = claims.get(key)
        if not val:
            continue
        if isinstance(val, str):
            roles.update(p.strip().lower() for p in val.split() if p.strip())
        elif isinstance(val, (list, tuple)):
            roles.update(str(p).strip().lower() for p in val)
    return roles or {"viewer"}


def _with_roles(claims) -> dict:
    claims = dict(claims)
    claims["roles"] = sorted(_extract_roles(claims))
    return claims


def _rs256_key(token: str, cfg: Dict[str, Optional[str]]):
    if cfg["jwks_url"] and not (cfg["jwks_inline"] or cfg["jwks_path"]):
        return jwt.PyJWKClient(cfg["jwks_url"]).get_signing_key_from_jwt(token).key
    if cfg["jwks_inline"]:
        jwks = json.loads(cfg["jwks_inline"])
    else:
        jwks = json.loads(Path(cfg["jwks_path"]).read_text(encoding="utf-8"))
    keys = jwks.get("keys", []) if isinstance(jwks, dict) else jwks
    kid = jwt.get_unverified_header(token).get("kid")
    for k in keys:
        if not kid or k.get("kid") == kid:
            return RSAAlgorithm.from_jwk(json.dumps(k))
    raise HTTPException(status_code=403, detail="No matching JWK found")


def _decode(token: str, key, alg: str, cfg: Dict[str, Optional[str]]) -> dict:
    return jwt.decode(
        token,
        key,
        algorithms=[alg],
        audience=cfg["audience"] or None,
        issuer=cfg["issuer"] or None,
        options={"verify_signature": True, "verify_exp": True, "verify_aud": bool(cfg["audience"])},
    )


def authenticate(authorization: Optional[str] = None, x_user_id: Optional[str] = None) -> dict:
    """Resolve request credentials to a claims dict with ``sub`` and ``roles``.

    With no verifier configured the service runs in dev mode: the caller is
    an admin whose identity comes from ``X-User-ID`` or ``DEV_USER_ID``.
    A static ``API_TOKEN`` carries no identity of its own, so it takes the
    user from the same header.
    """
    cfg = _settings()
    has_jwks = bool(cfg["jwks_url"] or cfg["jwks_inline"] or cfg["jwks_path"])
    if not (cfg["api_token"] or cfg["hs256_secret"] or has_jwks):
        return {"auth": "dev-mode", "sub": x_user_id or os.getenv("DEV_USER_ID"), "roles": ["admin"]}

    token = _require_bearer(authorization)

    if cfg["api_token"] and token.count(".") < 2:
        if token != cfg["api_token"]:
            raise HTTPException(status_code=403, detail="Invalid token")
        return {"auth": "static-token", "sub": x_user_id or os.getenv("API_USER_ID"), "roles": [_static_role()]}

    try:
        alg = jwt.get_unverified_header(token).get("alg", "").upper()
    except jwt.InvalidTokenError:
        alg = ""

    try:
        if has_jwks and (alg.startswith("RS") or not cfg["hs256_secret"]):
            return _with_roles(_decode(token, _rs256_key(token, cfg), "RS256", cfg))
        if cfg["hs256_secret"] and (not has_jwks or alg.startswith("HS")):
            return _with_roles(_decode(token, cfg["hs256_secret"], "HS256", cfg))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, jwt.PyJWKClientError, ValueError, OSError) as e:
        raise HTTPException(status_code=403, detail=f"Invalid token: {str(e)}")

    if cfg["api_token"]:
        if token != cfg["api_token"]:
            raise HTTPException(status_code=403, detail="Invalid token")
        return {"auth": "static-token", "sub": x_user_id or os.getenv("API_USER_ID"), "roles": [_static_role()]}

    raise HTTPException(status_code=401, detail="Unauthorized")


def role_required(min_role: str):
    min_role = min_role.lower()
    if min_role not in ROLE_ORDER:
        raise ValueError("Unknown role")

    def _dep(
        authorization: Optional[str] = Header(default=None),
        x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    ):
        claims = authenticate(authorization, x_user_id)
        roles = {r.lower() for r in claims.get("roles", [])}
        if not any(ROLE_ORDER.get(r, -1) >= ROLE_ORDER[min_role] for r in roles):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return claims

    return _dep
