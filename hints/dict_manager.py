"""Simulated dictionaries backing the dict_* hints.

A Cairo dict is an append-only segment of DictAccess(key, prev_value, new_value)
entries. The hints keep the current key -> value mapping of every dict on the Python
side so they can supply prev_value nondeterministically. Each dict is identified by
the index of its segment.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Optional

from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.memory import Memory

DICT_ACCESS_SIZE = 3


@dataclass
class DictTracker:
    """Python-side state of one dict: its contents and the expected current pointer."""
    data: Dict[int, MaybeRelocatable]
    current_ptr: RelocatableValue


class DictManager:
    """All dicts of a run, keyed by segment index."""

    def __init__(self):
        self.trackers: Dict[int, DictTracker] = {}

    def new_dict(self, segments: Memory, initial_dict: Optional[Dict[int, MaybeRelocatable]] = None
                 ) -> RelocatableValue:
        """Allocate a segment for a new dict and return its start."""
        base = segments.add_segment()
        self.trackers[base.segment_index] = DictTracker(
            data=dict(initial_dict or {}), current_ptr=base)
        return base

    def new_default_dict(self, segments: Memory, default_value: MaybeRelocatable,
                         initial_dict: Optional[Dict[int, MaybeRelocatable]] = None) -> RelocatableValue:
        """Like new_dict, but missing keys read as default_value."""
        base = segments.add_segment()
        data = defaultdict(lambda: default_value, initial_dict or {})
        self.trackers[base.segment_index] = DictTracker(data=data, current_ptr=base)
        return base

    def get_tracker(self, dict_ptr: RelocatableValue) -> DictTracker:
        """
        Tracker of the dict dict_ptr points into.

        Raises:
            ValueError: If dict_ptr does not belong to a known dict or is not its
                current end
        """
        tracker = self.trackers.get(dict_ptr.segment_index)
        if tracker is None:
            raise ValueError(f"Dict pointer {dict_ptr} does not belong to any dict")
        if tracker.current_ptr != dict_ptr:
            raise ValueError(
                f"Wrong dict pointer supplied. Got {dict_ptr}, expected {tracker.current_ptr}.")
        return tracker

    def get_dict(self, dict_ptr: RelocatableValue) -> Dict[int, MaybeRelocatable]:
        return self.get_tracker(dict_ptr).data
