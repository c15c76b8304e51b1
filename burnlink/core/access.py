from __future__ import annotations

from typing import Optional

from burnlink.core.exceptions import UnauthorizedError
from burnlink.models import FileRecord


def check_access(record: FileRecord, password_hash: Optional[str]) -> None:
    """Gate an encrypted record behind its stored password hash.

    The hash is derived client side; the comparison is plain equality and
    an empty or missing hash never matches. Unencrypted records pass.
    """
    if not record.is_encrypted:
        return
    # TODO: decide whether this should become hmac.compare_digest; the
    # current exact-match behaviour is what clients rely on today.
    if not password_hash or password_hash != record.password_hash:
        raise UnauthorizedError()
