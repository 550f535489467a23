"""
Student Code Generation

A student code is ``"20" + dni + check`` where ``check`` is a weighted
modulo-11 character over the first ten digits. The code can be recomputed
from the DNI at any time, which is how tampering is detected without a
database lookup.

Display form: ``20-45678912-X``. Stored and compared form: ``2045678912X``.
"""

import re

from .errors import InvalidDniFormatError

CODE_PREFIX = "20"
CODE_LENGTH = 11

_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)
_DNI_RE = re.compile(r"[0-9]{8}")
_SEPARATORS_RE = re.compile(r"[\s\-.]")


def is_valid_dni(dni: str | None) -> bool:
    """True if ``dni`` is exactly 8 ASCII digits."""
    return dni is not None and _DNI_RE.fullmatch(dni) is not None


def recompute_check(dni: str) -> str:
    """
    Compute the check character for a DNI.

    Returns:
        A digit "0"-"9" or "X"

    Raises:
        InvalidDniFormatError: If dni is not 8 digits
    """
    if not is_valid_dni(dni):
        raise InvalidDniFormatError(dni)

    base = CODE_PREFIX + dni
    total = sum(int(digit) * weight for digit, weight in zip(base, _WEIGHTS, strict=True))
    check = 11 - (total % 11)

    if check == 10:
        return "X"
    if check == 11:
        return "0"
    return str(check)


def generate(dni: str) -> str:
    """Build the student code for a DNI, e.g. 45678912 -> 2045678912X."""
    return f"{CODE_PREFIX}{dni}{recompute_check(dni)}"


def normalize(code: str) -> str:
    """Strip separators and whitespace; upper-case the check character."""
    return _SEPARATORS_RE.sub("", code).upper()


def extract_dni(code: str) -> str:
    """Return the DNI embedded in a normalized code (characters 3 to 10)."""
    return code[2:10]


def format_display(code: str) -> str:
    """Format a code for presentation: 2045678912X -> 20-45678912-X."""
    code = normalize(code)
    return f"{code[:2]}-{code[2:10]}-{code[10:]}"
