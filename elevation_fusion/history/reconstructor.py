"""Flattened session format and its reconstruction.

Samples are stored as one string: records separated by ``;``, fields
by ``,`` in the order timestamp, angle A, angle B.
"""

import logging
from typing import Iterable, List, Optional

from ..core.types import EstimatedSample, Session, SessionRecord, SessionSummary

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = ";"
FIELD_SEPARATOR = ","


def serialize(samples: Iterable[EstimatedSample]) -> str:
    """Flatten samples into the stored string."""
    return RECORD_SEPARATOR.join(
        f"{s.timestamp}{FIELD_SEPARATOR}{s.angle_a!r}{FIELD_SEPARATOR}{s.angle_b!r}"
        for s in samples
    )


def deserialize(flat: str) -> List[EstimatedSample]:
    """Rebuild the ordered sample sequence from a stored string.

    Records with the wrong field count or a non-numeric field are
    skipped one by one; wholly malformed input gives an empty list.
    """
    samples: List[EstimatedSample] = []
    skipped = 0

    for record in (flat or "").split(RECORD_SEPARATOR):
        if not record.strip():
            continue
        fields = record.split(FIELD_SEPARATOR)
        if len(fields) != 3:
            skipped += 1
            continue
        try:
            sample = EstimatedSample(
                timestamp=int(fields[0]),
                angle_a=float(fields[1]),
                angle_b=float(fields[2]),
            )
        except ValueError:
            skipped += 1
            continue
        samples.append(sample)

    if skipped:
        logger.debug("Skipped %d malformed record(s)", skipped)
    return samples


def to_record(session: Session, saved_at_ms: Optional[int] = None) -> SessionRecord:
    """Stored layout of a session; the id is assigned by the store.

    Args:
        session: Completed session.
        saved_at_ms: Wall-clock save time. Defaults to the session start.
    """
    return SessionRecord(
        id=session.id,
        timestamp=session.started_at_ms if saved_at_ms is None else saved_at_ms,
        data_points_csv=serialize(session.samples),
    )


def reconstruct(record: SessionRecord) -> Session:
    """Session rebuilt from its stored layout."""
    return Session(
        id=record.id,
        started_at_ms=record.timestamp,
        samples=tuple(deserialize(record.data_points_csv)),
    )


def summarize(record: SessionRecord) -> SessionSummary:
    """Listing entry for a stored record."""
    session = reconstruct(record)
    return SessionSummary(
        id=record.id if record.id is not None else 0,
        timestamp=record.timestamp,
        sample_count=len(session.samples),
        duration_s=session.duration_s,
    )
