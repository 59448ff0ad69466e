"""
Body fingerprinting for change detection.

The fingerprint is the MD5 digest of the UTF-8 body text, rendered as
32 lowercase hex characters. It is stored in the ``body_hashcode``
column of the metadata table, so the algorithm must stay stable: rows
written by earlier versions are compared against it.

Invariants:
    - Byte-identical bodies always yield identical fingerprints
    - Whitespace and comments are significant
"""

from __future__ import annotations

import hashlib


def fingerprint(body: str) -> str:
    """Compute the content hash of a function body.

    Args:
        body: Exact function body text

    Returns:
        Hex digest (32 characters)

    Example:
        >>> len(fingerprint("return 1;"))
        32
    """
    return hashlib.md5(body.encode("utf-8")).hexdigest()
