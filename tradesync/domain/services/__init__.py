"""Pure domain services (no I/O)."""

from .record_merger import merge_records, sort_newest_first
from .position_synthesizer import ClosedPositionSynthesizer, synthesize_closed_positions

__all__ = [
    "merge_records",
    "sort_newest_first",
    "ClosedPositionSynthesizer",
    "synthesize_closed_positions",
]
