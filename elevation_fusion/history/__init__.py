"""History module: stored-session format and reconstruction."""

from .reconstructor import (
    serialize,
    deserialize,
    to_record,
    reconstruct,
    summarize,
)

__all__ = [
    "serialize",
    "deserialize",
    "to_record",
    "reconstruct",
    "summarize",
]
