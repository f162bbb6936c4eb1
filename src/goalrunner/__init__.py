"""Goal runner: drive model-proposed edits through testing and implementation."""

__version__ = "0.1.0"
