"""
Authentication boundary.

Sign-in and sessions live in Firebase; the core only verifies the ID token on
each request and turns it into an Identity. Nothing here stores users.
"""

import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509 import load_pem_x509_certificate
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import ADMIN_UIDS, FIREBASE_PROJECT_ID
from .errors import PermissionDenied

logger = logging.getLogger(__name__)

security = HTTPBearer()

GOOGLE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)
CLOCK_SKEW_SECONDS = 60

# kid -> PEM certificate, refreshed when a token names an unknown kid
_signing_certs: dict[str, str] = {}


@dataclass(frozen=True)
class Identity:
    """The authenticated caller as seen by the core"""

    uid: str
    email: Optional[str] = None
    is_admin: bool = False


def unauthorized(detail: str, **headers: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers=headers or None)


async def signing_cert(kid: str) -> Optional[str]:
    """PEM certificate for ``kid``; fetches Google's current set on a miss"""
    if kid not in _signing_certs:
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(GOOGLE_CERTS_URL)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"❌ Could not refresh Firebase signing certificates: {e}")
            return None
        _signing_certs.clear()
        _signing_certs.update(response.json())
        logger.info(f"🔑 Loaded {len(_signing_certs)} Firebase signing certificates")
    return _signing_certs.get(kid)


def _split_token(token: str) -> tuple[dict, dict, bytes, bytes]:
    """Returns header, claims, signature and the signed bytes"""
    try:
        header_b64, claims_b64, signature_b64 = token.split(".")
        header, claims = (
            json.loads(base64.urlsafe_b64decode(part + "=" * (-len(part) % 4)))
            for part in (header_b64, claims_b64)
        )
        signature = base64.urlsafe_b64decode(signature_b64 + "=" * (-len(signature_b64) % 4))
    except (ValueError, TypeError) as e:
        raise unauthorized("Malformed token") from e
    return header, claims, signature, f"{header_b64}.{claims_b64}".encode()


def _check_signature(pem: str, signature: bytes, signed: bytes) -> None:
    public_key = load_pem_x509_certificate(pem.encode()).public_key()
    try:
        public_key.verify(signature, signed, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature as e:
        logger.warning("🔒 Rejected token with a bad signature")
        raise unauthorized("Invalid token signature") from e


def _check_claims(claims: dict) -> None:
    now = time.time()
    if claims.get("aud") != FIREBASE_PROJECT_ID:
        raise unauthorized("Token issued for another project")
    if claims.get("iss") != f"https://securetoken.google.com/{FIREBASE_PROJECT_ID}":
        raise unauthorized("Token has an unexpected issuer")
    if claims.get("exp", 0) < now:
        raise unauthorized("Token has expired", **{"X-Token-Expired": "true"})
    if claims.get("iat", 0) > now + CLOCK_SKEW_SECONDS:
        raise unauthorized("Token issued in the future")


async def verify_firebase_token(token: str) -> dict:
    """Check an RS256 Firebase ID token and return its claims"""
    if not FIREBASE_PROJECT_ID:
        logger.error("❌ FIREBASE_PROJECT_ID is not set, cannot verify tokens")
        raise HTTPException(status_code=500, detail="Authentication is not configured")

    header, claims, signature, signed = _split_token(token)
    if header.get("alg") != "RS256" or not header.get("kid"):
        raise unauthorized("Unsupported token header")

    pem = await signing_cert(header["kid"])
    if pem is None:
        raise unauthorized("Unknown token signing key")

    _check_signature(pem, signature, signed)
    _check_claims(claims)
    return claims


def identity_from_claims(claims: dict) -> Identity:
    uid = claims.get("sub") or claims.get("user_id") or claims.get("uid")
    if not uid:
        raise unauthorized("Token carries no user id")
    is_admin = bool(claims.get("admin")) or uid in ADMIN_UIDS
    return Identity(uid=uid, email=claims.get("email"), is_admin=is_admin)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Identity:
    """Resolve the caller from the Bearer token"""
    identity = identity_from_claims(await verify_firebase_token(credentials.credentials))
    logger.debug(f"Authenticated {identity.uid} (admin={identity.is_admin})")
    return identity


async def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise PermissionDenied("Admin access required")
    return identity
