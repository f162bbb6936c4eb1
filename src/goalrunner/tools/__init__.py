"""Edit application tooling used by the goal stages."""

from .apply_edits import ApplySummary, EditApplier
from .repair import RepairLadder, paths_are_equivalent, pick_repair_edit_for_path
from .replacements import apply_replacements, find_unique_index, strip_whitespace_with_map

__all__ = [
    "ApplySummary",
    "EditApplier",
    "RepairLadder",
    "apply_replacements",
    "find_unique_index",
    "paths_are_equivalent",
    "pick_repair_edit_for_path",
    "strip_whitespace_with_map",
]
