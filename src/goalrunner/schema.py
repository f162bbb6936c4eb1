"""Typed records exchanged with the goal store."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .phases import TERMINAL_PHASES, GoalPhase


class RecordModel(BaseModel):
    """Base Pydantic model tolerant of extra keys sent by the backend."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Goal(RecordModel):
    """A unit of requested work progressing through fixed phases."""

    id: str
    prompt: str = ""
    phase: GoalPhase = GoalPhase.PLANNING
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    children: List["Goal"] = Field(default_factory=list)

    @field_validator("id", "parent_id", "project_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("phase", mode="before")
    @classmethod
    def _coerce_phase(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {phase.value for phase in GoalPhase}:
                return lowered
            return GoalPhase.PLANNING
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _coerce_metadata(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @field_validator("children", mode="before")
    @classmethod
    def _coerce_children(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


Goal.model_rebuild()


class Project(RecordModel):
    """Project descriptor used to introduce the repository to the model."""

    id: str
    name: str = ""
    framework: Optional[str] = None
    language: Optional[str] = None
    path: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def describe(self) -> str:
        return (
            f"Project: {self.name or self.id}\n"
            f"Framework: {self.framework or 'unknown'}\n"
            f"Language: {self.language or 'javascript'}\n"
            f"Path: {self.path or ''}"
        )


__all__ = ["Goal", "Project", "RecordModel"]
