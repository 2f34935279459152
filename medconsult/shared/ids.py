"""Human-facing short codes: prefix + 6 random digits"""

import re
import secrets

APPOINTMENT_PREFIX = "APP"
SLOT_PREFIX = "SLO"


def _six_digits() -> str:
    return str(100000 + secrets.randbelow(900000))


def generate_appointment_code() -> str:
    return f"{APPOINTMENT_PREFIX}{_six_digits()}"


def generate_slot_code() -> str:
    return f"{SLOT_PREFIX}{_six_digits()}"


def is_code(value: str, prefix: str) -> bool:
    """Check an identifier matches PREFIX + 6 digits"""
    return bool(re.fullmatch(rf"{prefix}\d{{6}}", value or ""))
