"""Request signing: canonical string assembly and HMAC-SHA1 signatures.

Everything here is pure and deterministic given its inputs, apart from
`gmt_now` which reads the clock when no `now` is passed.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from email.utils import format_datetime

from mns.constants import AUTHORIZATION_SCHEME, MNS_VERSION, MNS_VERSION_HEADER, XML_CONTENT_TYPE


def content_md5(body: bytes) -> str:
    """Base64 of the lowercase hex MD5 digest (the hex text, not the raw digest)."""
    hex_digest = hashlib.md5(body).hexdigest()
    return base64.b64encode(hex_digest.encode("ascii")).decode("ascii")


def canonical_string(method: str, content_md5: str, date: str, resource: str) -> str:
    # The content type line is always the XML literal, whatever header is sent.
    return "\n".join(
        (
            method,
            content_md5,
            XML_CONTENT_TYPE,
            date,
            f"{MNS_VERSION_HEADER}:{MNS_VERSION}",
            resource,
        )
    )


def sign(secret: str, string_to_sign: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign_request(secret: str, method: str, content_md5: str, date: str, resource: str) -> str:
    return sign(secret, canonical_string(method, content_md5, date, resource))


def gmt_now(now: datetime | None = None) -> str:
    """RFC 2822 date in GMT, e.g. ``Thu, 02 Feb 2023 12:27:22 GMT``.

    ``now`` must be timezone-aware; naive datetimes are rejected.
    """
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None or current.utcoffset() is None:
        raise ValueError("gmt_now requires a timezone-aware datetime")
    return format_datetime(current.astimezone(timezone.utc), usegmt=True)


def authorization_header(access_id: str, signature: str) -> str:
    return f"{AUTHORIZATION_SCHEME} {access_id}:{signature}"
