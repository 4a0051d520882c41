"""Email address syntax checks shared by the IdP and RP."""

from email_validator import EmailNotValidError, validate_email


def is_valid_email(value: str) -> bool:
    """Check email syntax only (no DNS or deliverability lookups)."""
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def normalize_email(value: str) -> str:
    """Canonical form used as the store key and in assertions."""
    return value.strip().lower()
