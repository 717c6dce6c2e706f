"""
Short code generation for new links.

Two interchangeable strategies, picked by `settings.short_code_strategy`:
random codes checked against the DB, or the row ID encoded in salted Base62.
"""

import random
import string
from abc import ABC, abstractmethod

from sqlalchemy.orm import Session

from smartlink_app.models.url import URL

# Paths served by the app itself; a short code must never shadow them
RESERVED_CODES = frozenset({"api", "docs", "redoc", "health", "openapi.json"})


class ShortCodeError(RuntimeError):
    """No usable short code could be produced."""


class ShortCodeStrategy(ABC):
    """Base class for short code generators"""

    @abstractmethod
    def generate(self, url_id: int, db_session: Session) -> str:
        """Return a unique code for the link with database ID `url_id`."""
        pass


class RandomShortCodeStrategy(ShortCodeStrategy):
    """
    Random letters and digits, retried on collision.

    Codes are unguessable but every attempt costs a lookup.
    """

    def __init__(self, length: int = 5, max_retries: int = 5):
        self.length = length
        self.max_retries = max_retries
        self.characters = string.ascii_letters + string.digits

    def generate(self, url_id: int, db_session: Session) -> str:
        for _ in range(self.max_retries):
            short_code = "".join(random.choice(self.characters) for _ in range(self.length))
            if short_code.lower() in RESERVED_CODES:
                continue
            if not db_session.query(URL.id).filter(URL.short_code == short_code).first():
                return short_code

        raise ShortCodeError(
            f"Could not generate unique short code after {self.max_retries} attempts"
        )


class Base62ShortCodeStrategy(ShortCodeStrategy):
    """
    Salted row ID in Base62. Collision-free and needs no lookups.

    The code grows with the ID; once it no longer fits `max_length` a
    ShortCodeError is raised instead of truncating (which would collide).
    """

    BASE62_CHARS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"

    def __init__(self, salt: int = 1000, max_length: int = 5):
        self.salt = salt
        self.max_length = max_length

    def generate(self, url_id: int, db_session: Session) -> str:
        encoded = self.encode(url_id + self.salt)
        if len(encoded) > self.max_length:
            raise ShortCodeError(
                f"Code '{encoded}' for URL ID {url_id} exceeds max length {self.max_length}; "
                f"increase short_url_length"
            )
        return encoded

    @classmethod
    def encode(cls, number: int) -> str:
        if number == 0:
            return cls.BASE62_CHARS[0]

        digits = []
        while number > 0:
            number, remainder = divmod(number, 62)
            digits.append(cls.BASE62_CHARS[remainder])
        return "".join(reversed(digits))
