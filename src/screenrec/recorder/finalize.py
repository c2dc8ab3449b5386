"""Assembly of the final recording from the buffered chunks."""

from __future__ import annotations

from datetime import datetime

from screenrec.errors import FinalizeFailure
from screenrec.recorder.base import Chunk, RecordingResult
from screenrec.recorder.buffer import ChunkBuffer, PauseAccounting


def select_chunks(buffer: ChunkBuffer) -> list[Chunk]:
    """Chunk range to write out.

    Fixed mode writes the whole buffer. Loop mode writes the valid window and,
    when eviction has moved past it, puts the init segment back in front:
    without it the container has no header and most players refuse the file.
    """
    if not buffer.is_loop:
        return list(buffer.chunks)

    selected = buffer.valid_chunks()
    init = buffer.init_segment
    if init is not None and (not selected or selected[0] is not init):
        selected = [init] + selected
    return selected


def assemble_recording(
    buffer: ChunkBuffer,
    pauses: PauseAccounting,
    mime_type: str,
    now: float,
    elapsed_time: int,
    start_time: datetime,
    end_time: datetime,
    mode: str,
) -> RecordingResult:
    """Build the RecordingResult for a stopped session.

    Raises FinalizeFailure if the chunks cannot be joined.
    """
    chunks = select_chunks(buffer)
    try:
        blob = b"".join(chunk.data for chunk in chunks)
    except (TypeError, MemoryError) as e:
        raise FinalizeFailure(f"Could not assemble recording: {e}") from e

    if buffer.is_loop:
        duration = buffer.buffered_duration(now, pauses)
    else:
        duration = float(elapsed_time)

    return RecordingResult(
        blob=blob,
        mime_type=mime_type,
        duration=duration,
        start_time=start_time,
        end_time=end_time,
        mode=mode,
    )
