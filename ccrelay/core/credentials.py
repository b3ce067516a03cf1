"""Upstream credential extraction

Callers embed the upstream token and base URL in a regular auth header:

    Authorization: Bearer cc:<token>!<base_url>
    X-API-Key: cc:<token>!<base_url>

Without the "cc:" marker, or without the "!" separator, the value is a plain
token and the base URL is left to the configured policy.
"""
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple, Union

import httpx

from ccrelay.core.exceptions import CredentialError, CredentialFailure
from ccrelay.core.utils import mask_secret
from ccrelay.models.config import AppConfig

# Header names in precedence order
CREDENTIAL_HEADERS = ("authorization", "x-api-key")

BEARER_PREFIX = "bearer "
CREDENTIAL_MARKER = "cc:"
BASE_URL_SEPARATOR = "!"

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass(frozen=True)
class CredentialParts:
    """Raw extraction result; base_url is None when the caller gave no override"""
    token: str
    base_url: Optional[str] = None


@dataclass(frozen=True)
class Credential:
    """Token and base URL used for exactly one upstream call"""
    token: str
    base_url: str

    def __repr__(self) -> str:
        return f"Credential(token={mask_secret(self.token)!r}, base_url={self.base_url!r})"


def select_carrier_value(headers: HeaderSource) -> Optional[str]:
    """Pick the header value carrying the credential.

    Authorization wins over X-API-Key; within one header name the first
    non-blank value wins. Names are compared case-insensitively.
    """
    items = headers.items() if hasattr(headers, "items") else headers

    candidates: dict = {name: [] for name in CREDENTIAL_HEADERS}
    for name, value in items:
        lower = name.lower()
        if lower in candidates and value and value.strip():
            candidates[lower].append(value.strip())

    for name in CREDENTIAL_HEADERS:
        if candidates[name]:
            return candidates[name][0]
    return None


def normalize_base_url(base_url: str) -> str:
    """Default the scheme to https and strip one trailing slash."""
    if "://" not in base_url:
        base_url = f"https://{base_url}"
    if base_url.endswith("/"):
        base_url = base_url[:-1]

    try:
        host = httpx.URL(base_url).host
    except httpx.InvalidURL:
        host = ""
    if not host:
        raise CredentialError(
            CredentialFailure.MALFORMED,
            f"Invalid credential: base URL {base_url!r} has no host",
        )
    return base_url


def parse_credential_value(value: str) -> CredentialParts:
    """Parse one carrier header value into its token and optional base URL.

    Raises:
        CredentialError: MALFORMED when the token or base URL part is empty
    """
    value = value.strip()
    if value[:len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        value = value[len(BEARER_PREFIX):].strip()

    marker = value.find(CREDENTIAL_MARKER)
    if marker == -1:
        # Plain token, no override
        if not value:
            raise CredentialError(CredentialFailure.MALFORMED, "Invalid credential: empty token")
        return CredentialParts(token=value)

    payload = value[marker + len(CREDENTIAL_MARKER):]
    bang = payload.find(BASE_URL_SEPARATOR)
    if bang == -1:
        token = payload.strip()
        if not token:
            raise CredentialError(
                CredentialFailure.MALFORMED,
                'Invalid credential: empty token after "cc:"',
            )
        return CredentialParts(token=token)

    token = payload[:bang].strip()
    base_url = payload[bang + 1:].strip()
    if not token or not base_url:
        raise CredentialError(
            CredentialFailure.MALFORMED,
            "Invalid credential: empty token or base URL",
        )
    return CredentialParts(token=token, base_url=normalize_base_url(base_url))


def extract_credential(headers: HeaderSource) -> CredentialParts:
    """Extract credential parts from a request's headers.

    Raises:
        CredentialError: MISSING when no carrier header is present,
            MALFORMED when the selected value does not parse
    """
    value = select_carrier_value(headers)
    if value is None:
        raise CredentialError(
            CredentialFailure.MISSING,
            'Missing credentials: expected "Authorization" or "X-API-Key" header '
            'containing "cc:AUTH_TOKEN!BASE_URL"',
        )
    return parse_credential_value(value)


def resolve_credential(parts: CredentialParts, config: AppConfig) -> Credential:
    """Apply the base URL policy to extracted parts."""
    if parts.base_url is not None:
        return Credential(token=parts.token, base_url=parts.base_url)

    if config.require_explicit_base_url:
        raise CredentialError(
            CredentialFailure.MALFORMED,
            'Invalid credential: missing "!BASE_URL" after the token',
        )
    return Credential(token=parts.token, base_url=config.default_base_url)
