"""API dependencies"""
from fastapi import Depends, Request

from ccrelay.core.credentials import Credential, extract_credential, resolve_credential
from ccrelay.models.config import AppConfig


def get_app_config(request: Request) -> AppConfig:
    """Get the configuration the application was created with"""
    return request.app.state.config


async def require_credential(
    request: Request,
    config: AppConfig = Depends(get_app_config),
) -> Credential:
    """Extract the caller's upstream credential

    Raises:
        CredentialError: 401 if the credential is missing or malformed
    """
    return resolve_credential(extract_credential(request.headers), config)
