import os
import re
import secrets
import string
from urllib.parse import urlsplit

from tinylink.errors import InvalidInput

# URL-safe alphabet: letters, digits, "_" and "-"
ALPHABET = string.ascii_letters + string.digits + "_-"

CODE_LENGTH = int(os.getenv("CODE_LENGTH", 7))
MIN_CODE_LENGTH = int(os.getenv("MIN_CODE_LENGTH", 5))
MAX_CODE_LENGTH = 32

CODE_RE = re.compile(r"[A-Za-z0-9_-]+")

# Paths served by the app itself; never usable as short codes
RESERVED = {"api", "docs", "health", "openapi.json", "redoc", "static",
            "not-found", "login", "register", "dashboard", "about", "terms",
            "privacy", "favicon.ico"}


def generate_code(length: int | None = None) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length or CODE_LENGTH))


def is_reserved(code: str) -> bool:
    return code.lower() in RESERVED


def validate_custom_code(code: str, min_length: int | None = None) -> str:
    """Return the cleaned custom code, or raise InvalidInput."""
    min_length = MIN_CODE_LENGTH if min_length is None else min_length
    code = (code or "").strip()
    if len(code) < min_length:
        raise InvalidInput(f"Short code must be at least {min_length} characters long")
    if len(code) > MAX_CODE_LENGTH:
        raise InvalidInput(f"Short code must be at most {MAX_CODE_LENGTH} characters long")
    if not CODE_RE.fullmatch(code):
        raise InvalidInput("Short code may only contain letters, digits, '_' and '-'")
    if is_reserved(code):
        raise InvalidInput(f"Short code '{code}' is reserved")
    return code


def normalize_destination(url: str) -> str:
    url = (url or "").strip()
    if not url or any(c.isspace() for c in url):
        raise InvalidInput("Destination URL is malformed")
    if not url.lower().startswith(("http://", "https://")):
        url = f"https://{url}"
    if not urlsplit(url).hostname:
        raise InvalidInput("Destination URL is missing a host")
    return url
