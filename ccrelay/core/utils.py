"""Shared utility functions."""


def mask_secret(secret: str, visible: int = 4) -> str:
    """Mask a secret for logging, keeping only a short prefix and suffix.

    Secrets too short to keep both ends without revealing most of the value
    are fully masked.

    Examples:
        >>> mask_secret("sk-ant-api03-abcdefgh")
        "sk-a...efgh"
        >>> mask_secret("short")
        "***"
    """
    if not secret:
        return ""
    if len(secret) <= visible * 3:
        return "***"
    return f"{secret[:visible]}...{secret[-visible:]}"
