"""
Content fingerprinting for incremental crawls.

Product page text is hashed with SHA-256; a page whose fingerprint matches
the stored one is skipped without calling an extraction service. Bulk
extraction has no page text, so its records are fingerprinted instead.
"""

import hashlib
import json
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def generate_hash(content: Optional[str]) -> Optional[str]:
    """
    Generate the 64-character lowercase hex SHA-256 digest of content.

    Args:
        content: Extracted page text

    Returns:
        Hex digest, or None for empty content
    """
    if not content:
        return None
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def has_content_changed(new_hash: Optional[str], old_hash: Optional[str]) -> bool:
    """
    Compare two fingerprints.

    Both absent counts as unchanged; exactly one absent counts as changed.
    Blank strings count as absent (stored hashes default to "").
    """
    new_hash = new_hash or None
    old_hash = old_hash or None

    if new_hash is None and old_hash is None:
        return False
    if new_hash is None or old_hash is None:
        return True

    changed = new_hash != old_hash
    if not changed:
        logger.debug(f"Content unchanged (hash {new_hash[:12]}...)")
    return changed


def record_fingerprint(record) -> Optional[str]:
    """
    Fingerprint an extracted record for flows that have no page text.

    The record's fields are serialized with sorted keys, so two extractions
    returning the same values produce the same hash.
    """
    if record is None:
        return None
    payload = json.dumps(record.to_dict(), sort_keys=True, ensure_ascii=False)
    return generate_hash(payload)
