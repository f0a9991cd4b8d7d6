import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

TRUTHY = ("true", "1", "yes", "on")


def _raw(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value is not None else None


def env_bool(name: str, default: bool = False) -> bool:
    value = _raw(name)
    if not value:
        return default
    return value.lower() in TRUTHY


def env_none_or_str(name: str, default=None):
    """String setting; unset, blank or the literal "none" gives `default`."""
    value = _raw(name)
    if not value or value.lower() == "none":
        return default
    return value


def env_list(name: str, default: list[str]) -> list[str]:
    """Comma separated setting as a list, blanks dropped."""
    value = _raw(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]
