import base64
import time
from typing import Any

from authlib.jose import jwt


def oct_jwk(key: bytes, kid: str) -> dict[str, str]:
    return {
        "kty": "oct",
        "k": base64.urlsafe_b64encode(key).rstrip(b"=").decode("ascii"),
        "alg": "HS256",
        "kid": kid,
    }


def sign_id_token(
    key: bytes, kid: str, issuer: str, audience: str, **claims: Any
) -> str:
    """HS256 ID token as an OIDC provider would issue it."""
    now = int(time.time())
    payload = {"iss": issuer, "aud": audience, "iat": now, "exp": now + 300, **claims}
    token = jwt.encode({"alg": "HS256", "kid": kid}, payload, key)
    return token.decode() if isinstance(token, bytes) else token


def saml_response(email: str, roles: list[str] | None = None, name: str | None = None) -> str:
    """Base64 SAML response carrying a NameID and optional attributes."""
    attributes = ""
    if roles:
        values = "".join(
            f"<saml:AttributeValue>{role}</saml:AttributeValue>" for role in roles
        )
        attributes += f'<saml:Attribute Name="groups">{values}</saml:Attribute>'
    if name:
        attributes += (
            '<saml:Attribute Name="displayName">'
            f"<saml:AttributeValue>{name}</saml:AttributeValue></saml:Attribute>"
        )
    document = (
        '<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol" '
        'xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion">'
        "<saml:Assertion>"
        f"<saml:Subject><saml:NameID>{email}</saml:NameID></saml:Subject>"
        f"<saml:AttributeStatement>{attributes}</saml:AttributeStatement>"
        "</saml:Assertion></samlp:Response>"
    )
    return base64.b64encode(document.encode("utf-8")).decode("ascii")
