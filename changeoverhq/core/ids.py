"""Identifier helpers shared by the registries."""

from __future__ import annotations

import re
import secrets
import string

BASE36_ALPHABET = string.digits + string.ascii_lowercase
SLUG_MAX_LENGTH = 32

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def short_id(length: int = 6) -> str:
    """Random lowercase base36 token, e.g. ``k3f9za``."""

    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def slugify(value: str, fallback: str = "property") -> str:
    slug = _NON_ALNUM.sub("-", value.strip().lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH] or fallback
