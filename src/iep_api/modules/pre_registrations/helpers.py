"""
Pre-Registration Helpers

Masking of contact data returned to students who have not yet proven who
they are.
"""


def mask_email(email: str | None) -> str | None:
    """
    Mask an email address for display.

    Shows the first character of the local part and the full domain,
    e.g. ``juan.perez@gmail.com`` -> ``j***@gmail.com``.
    """
    if not email:
        return None
    if "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    if not local:
        return f"***@{domain}"
    return f"{local[0]}***@{domain}"


def mask_phone(phone: str | None) -> str | None:
    """Show only the last 3 digits of a phone number: ``***789``."""
    if not phone:
        return None
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) < 3:
        return "***"
    return f"***{digits[-3:]}"
