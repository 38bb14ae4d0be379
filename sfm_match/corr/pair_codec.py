"""
Canonical encoding of unordered image pairs, as used by COLMAP's database.
"""

from __future__ import annotations

from typing import Tuple

# Upper bound on image identifiers in COLMAP's pairing scheme (2^31 - 1).
MAX_IMAGE_ID = 2147483647


def image_ids_to_pair_id(image_id1: int, image_id2: int) -> int:
    """
    Encode two image identifiers into one pair key.

    The key is symmetric in its arguments. It is only injective while both
    identifiers stay below MAX_IMAGE_ID; larger identifiers silently collide.

    Args:
        image_id1: First image identifier (positive).
        image_id2: Second image identifier (positive).

    Returns:
        MAX_IMAGE_ID * min(id1, id2) + max(id1, id2).
    """
    if image_id1 > image_id2:
        image_id1, image_id2 = image_id2, image_id1
    return MAX_IMAGE_ID * int(image_id1) + int(image_id2)


def pair_id_to_image_ids(pair_id: int) -> Tuple[int, int]:
    """Decode a pair key back into (smaller_id, larger_id)."""
    image_id2 = int(pair_id) % MAX_IMAGE_ID
    image_id1 = (int(pair_id) - image_id2) // MAX_IMAGE_ID
    return image_id1, image_id2


__all__ = ["MAX_IMAGE_ID", "image_ids_to_pair_id", "pair_id_to_image_ids"]
