"""Core functionality"""
from .config import load_config
from .credentials import Credential, CredentialParts, extract_credential, resolve_credential
from .exceptions import CredentialError, CredentialFailure, ProxyError

__all__ = [
    "load_config",
    "Credential",
    "CredentialParts",
    "extract_credential",
    "resolve_credential",
    "CredentialError",
    "CredentialFailure",
    "ProxyError",
]
