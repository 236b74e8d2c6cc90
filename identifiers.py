# identifiers.py
import secrets
import string

from errors import InvalidJobError

_ID_ALPHABET = string.ascii_letters + string.digits


class IdentifierSanitizer:
    """Turns account identifiers (email or mobile) into id-safe strings."""

    def normalize(self, identifier):
        if not identifier:
            raise InvalidJobError("Missing required identifier for sanitization")
        sanitized = str(identifier).strip()
        if "@" in sanitized:
            # jane.doe@shop.com -> jane, seller@shop.com -> seller_shop
            sanitized = sanitized.replace("@", "_", 1).split(".")[0]
        return sanitized


def generate_job_id(identifier, sanitizer=None, length=8):
    sanitizer = sanitizer or IdentifierSanitizer()
    base = sanitizer.normalize(identifier or "unknown")
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))
    return f"{base}_{suffix}"


def download_job_id(parent_id):
    return f"{parent_id}:download"
