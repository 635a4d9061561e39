"""SAML assertion parsing and service-provider metadata.

The ACS endpoint receives either an already-decoded assertion (inline
``attributes``/``profile`` objects) or a raw ``SAMLResponse``. Raw responses
are base64-decoded when possible and their attribute statements read with
xmltodict; anything undecodable is kept as-is and simply yields no
attributes.
"""

import base64
import binascii
from collections.abc import Iterator, Mapping
from typing import Any
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import escape, quoteattr

import xmltodict
from loguru import logger
from pydantic import BaseModel, Field

from src.cmms_auth.core.exceptions import SamlAssertionError
from src.cmms_auth.core.models.identity import FederatedIdentity
from src.cmms_auth.core.roles import normalize_roles
from src.cmms_auth.entities.core.identity_provider import IdentityProviderConfig
from src.cmms_auth.runtime.context import get_config

EMAIL_BODY_KEYS = ("email", "Email", "userName", "UserId")
EMAIL_ATTRIBUTE_KEYS = ("email", "mail", "NameID", "nameId")
ROLE_ATTRIBUTE_KEYS = ("roles", "Groups", "groups")
NAME_ATTRIBUTE_KEYS = ("displayName", "name")


class SamlAssertion(BaseModel):
    email: str
    name: str | None = None
    roles: list[str] = Field(default_factory=list)
    relay_state: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


def _local_name(key: str) -> str:
    return key.rsplit(":", 1)[-1]


def _walk(node: Any, name: str) -> Iterator[Any]:
    """Yield every element named ``name`` (namespace prefix ignored)."""
    if isinstance(node, list):
        for item in node:
            yield from _walk(item, name)
    elif isinstance(node, Mapping):
        for key, value in node.items():
            if key.startswith("@") or key == "#text":
                continue
            if _local_name(key) == name:
                if isinstance(value, list):
                    yield from value
                else:
                    yield value
            yield from _walk(value, name)


def _text(value: Any) -> str | None:
    if isinstance(value, Mapping):
        value = value.get("#text")
    return value.strip() if isinstance(value, str) and value.strip() else None


def decode_saml_response(payload: str) -> str:
    """Base64-decode ``payload``; on any decoding error return it unchanged."""
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return payload


def xml_attributes(document: str) -> dict[str, Any]:
    """Read NameID and attribute statements out of a SAML response document."""
    if not document.lstrip().startswith("<"):
        return {}
    try:
        tree = xmltodict.parse(document)
    except ExpatError as exc:
        logger.warning("Unparseable SAML response: {}", exc)
        return {}

    attributes: dict[str, Any] = {}
    for name_id in _walk(tree, "NameID"):
        text = _text(name_id)
        if text:
            attributes.setdefault("NameID", text)
    for attribute in _walk(tree, "Attribute"):
        if not isinstance(attribute, Mapping):
            continue
        values = next(
            (v for k, v in attribute.items() if _local_name(k) == "AttributeValue"), None
        )
        if not isinstance(values, list):
            values = [values]
        texts = [t for t in map(_text, values) if t]
        if not texts:
            continue
        value: Any = texts[0] if len(texts) == 1 else texts
        for key in ("@Name", "@FriendlyName"):
            label = attribute.get(key)
            if label:
                attributes.setdefault(label, value)
    return attributes


def _first_email(*candidates: Any) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, str) and "@" in candidate:
            return candidate.strip().lower()
    return None


def _role_values(attributes: Mapping[str, Any]) -> list[str]:
    for key in ROLE_ATTRIBUTE_KEYS:
        value = attributes.get(key)
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str)]
    return []


def parse_saml_assertion(body: Mapping[str, Any]) -> SamlAssertion:
    """Extract email, name, roles and relay state from an ACS post body.

    Raises:
        SamlAssertionError: when no candidate field holds an email address
    """
    relay_state = body.get("RelayState") or body.get("relayState")
    response = body.get("SAMLResponse") or body.get("samlResponse")

    decoded: dict[str, Any] = {}
    if isinstance(response, str) and response:
        decoded = xml_attributes(decode_saml_response(response))

    if isinstance(body.get("attributes"), Mapping):
        attributes = dict(body["attributes"])
    elif isinstance(body.get("profile"), Mapping):
        attributes = dict(body["profile"])
    else:
        attributes = decoded

    email = _first_email(
        *(body.get(k) for k in EMAIL_BODY_KEYS),
        *(attributes.get(k) for k in EMAIL_ATTRIBUTE_KEYS),
    )
    if not email:
        raise SamlAssertionError()

    name_candidates = (*(attributes.get(k) for k in NAME_ATTRIBUTE_KEYS), body.get("name"))
    name = next((v for v in name_candidates if isinstance(v, str) and v), None)
    return SamlAssertion(
        email=email,
        name=name,
        roles=_role_values(attributes),
        relay_state=relay_state if isinstance(relay_state, str) else None,
        attributes=attributes,
    )


def assertion_to_identity(assertion: SamlAssertion, tenant_id: str) -> FederatedIdentity:
    return FederatedIdentity(
        protocol="saml",
        provider="saml",
        email=assertion.email,
        name=assertion.name,
        roles=normalize_roles(assertion.roles),
        domain=assertion.email.rpartition("@")[2] or None,
        tenant_hint=tenant_id,
        relay_state=assertion.relay_state,
        raw_claims=assertion.attributes,
    )


def saml_entity_id(tenant_id: str, idp: IdentityProviderConfig | None = None) -> str:
    if idp and idp.issuer:
        return idp.issuer
    return f"{get_config().saml.entity_id_prefix}:{tenant_id}"


def saml_acs_url(tenant_id: str, idp: IdentityProviderConfig | None = None) -> str:
    if idp and idp.acs_url:
        return idp.acs_url
    return f"{get_config().app.api_base_path}/auth/saml/{tenant_id}/acs"


def build_saml_metadata(tenant_id: str, idp: IdentityProviderConfig | None = None) -> str:
    """Service-provider metadata XML for ``tenant_id``."""
    certificate = get_config().saml.certificate_placeholder
    if idp and idp.certificate:
        certificate = idp.certificate
    return (
        '<?xml version="1.0"?>\n'
        f'<EntityDescriptor xmlns="urn:oasis:names:tc:SAML:2.0:metadata" entityID={quoteattr(saml_entity_id(tenant_id, idp))}>\n'
        '  <SPSSODescriptor AuthnRequestsSigned="false" WantAssertionsSigned="true" '
        'protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">\n'
        '    <KeyDescriptor use="signing">\n'
        '      <KeyInfo xmlns="http://www.w3.org/2000/09/xmldsig#">\n'
        f"        <X509Data><X509Certificate>{escape(certificate)}</X509Certificate></X509Data>\n"
        "      </KeyInfo>\n"
        "    </KeyDescriptor>\n"
        "    <NameIDFormat>urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress</NameIDFormat>\n"
        '    <AssertionConsumerService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST" '
        f'Location={quoteattr(saml_acs_url(tenant_id, idp))} index="0" isDefault="true"/>\n'
        "  </SPSSODescriptor>\n"
        "  <Organization>\n"
        f'    <OrganizationName xml:lang="en">{escape(tenant_id)}</OrganizationName>\n'
        f'    <OrganizationDisplayName xml:lang="en">{escape(tenant_id)}</OrganizationDisplayName>\n'
        f'    <OrganizationURL xml:lang="en">{escape(get_config().app.frontend_url)}</OrganizationURL>\n'
        "  </Organization>\n"
        "</EntityDescriptor>\n"
    )
