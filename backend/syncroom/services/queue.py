"""Queue operations scoped to a single room.

Each operation mutates the room synchronously and returns the reference
that clients should now be playing, or ``None`` when nothing changed and no
notification is due.
"""
import logging
from typing import Optional

from syncroom.models.room import CurrentMedia, MediaReference, Room

logger = logging.getLogger(__name__)


def append(room: Room, reference: MediaReference, now: float) -> Optional[MediaReference]:
    room.queue.append(reference)
    if room.current is not None:
        return None

    # First entry becomes current and starts from the top
    room.current = CurrentMedia.from_queue(len(room.queue) - 1, reference)
    room.player.restart(now)
    logger.info(f"Room {room.id}: {reference.raw_url} is now current")
    return reference


def _step(room: Room, direction: int, now: float) -> Optional[MediaReference]:
    if room.queue:
        length = len(room.queue)
        index = (room.current_index + direction + length) % length
        reference = room.queue[index]
        room.current = CurrentMedia.from_queue(index, reference)
        room.player.restart(now)
        logger.info(f"Room {room.id}: moved to queue index {index}")
        return reference

    # Provider-native collections navigate themselves; pass the reference through
    if room.current is not None:
        return room.current.reference

    return None


def advance(room: Room, now: float) -> Optional[MediaReference]:
    return _step(room, 1, now)


def retreat(room: Room, now: float) -> Optional[MediaReference]:
    return _step(room, -1, now)
