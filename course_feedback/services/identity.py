"""Anonymous participant identity.

An anonymous ID is generated once per browser instance and kept client-side
(in the web flow: the signed session cookie). Nothing on the server maps it
to a person; its only persisted trace is the response rows it submitted.
"""

import secrets
import time
from typing import MutableMapping, Optional, Protocol

from course_feedback.utils import BASE36_ALPHABET, to_base36

ANONYMOUS_ID_PREFIX = "student"
RANDOM_FRAGMENT_LENGTH = 6


def generate_anonymous_id(timestamp_ms: Optional[int] = None) -> str:
    """Return `student_<base36 ms timestamp>_<6 random base36 chars>`."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    random_part = "".join(
        secrets.choice(BASE36_ALPHABET) for _ in range(RANDOM_FRAGMENT_LENGTH)
    )
    return f"{ANONYMOUS_ID_PREFIX}_{to_base36(timestamp_ms)}_{random_part}"


class AnonymousIdentityProvider(Protocol):
    def get_or_create(self) -> str:
        ...


class StorageIdentityProvider:
    """Keeps the anonymous ID in a mutable mapping owned by the client.

    Any dict-like store works; the web routes hand in `request.session`, which
    Starlette serialises into a signed cookie.
    """

    def __init__(self, storage: MutableMapping, key: str = "anonymous_id"):
        self.storage = storage
        self.key = key

    def get_or_create(self) -> str:
        existing = self.storage.get(self.key)
        if existing:
            return existing
        anonymous_id = generate_anonymous_id()
        self.storage[self.key] = anonymous_id
        return anonymous_id


class InMemoryIdentityProvider(StorageIdentityProvider):
    """Process-local store, for tests and scripts."""

    def __init__(self, key: str = "anonymous_id"):
        super().__init__({}, key=key)

    def clear(self) -> None:
        self.storage.clear()
