"""Container/codec negotiation."""

from __future__ import annotations

import logging

from screenrec.constants import MIME_CANDIDATES, MIME_PRIORITY
from screenrec.errors import UnsupportedError

logger = logging.getLogger(__name__)


def candidate_mime_types(requested: str) -> list[str]:
    """MIME types to probe, best first.

    The requested container's candidates go first, then the rest in the
    global ``mp4 -> webm;codecs=vp9 -> webm`` order.
    """
    order = [requested] + [fmt for fmt in MIME_PRIORITY if fmt != requested]
    candidates = []
    for fmt in order:
        candidates.extend(MIME_CANDIDATES.get(fmt, ()))
    return candidates


def negotiate_mime_type(source, requested: str) -> str:
    """Return the first MIME type *source* can encode.

    Raises UnsupportedError if none of the candidates are available.
    """
    for mime_type in candidate_mime_types(requested):
        if source.is_type_supported(mime_type):
            if not mime_type.startswith(f"video/{requested}"):
                logger.info("Requested %s unavailable, falling back to %s", requested, mime_type)
            return mime_type
    raise UnsupportedError("No supported video container (tried mp4 and webm)")
