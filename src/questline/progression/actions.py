"""Action payloads accepted by the engine.

A closed union tagged on ``action_type``; anything that does not parse into
one of these never reaches the award path.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

SourceId = Annotated[str, Field(min_length=1, max_length=128)]


class TaskAction(BaseModel):
    action_type: Literal["task"] = "task"
    task_id: SourceId
    is_high_priority: bool = False
    # Local hour the task was completed; defaults to the clock's current hour
    completion_hour: int | None = Field(default=None, ge=0, le=23)


class HabitAction(BaseModel):
    action_type: Literal["habit"] = "habit"
    habit_id: SourceId
    # Habits scheduled for today, for the all-habits challenge
    scheduled_habits_today: int | None = Field(default=None, ge=0)


class FocusAction(BaseModel):
    action_type: Literal["focus"] = "focus"
    # Session opened by start_focus_session; its stored start time is used
    session_id: SourceId


Action = Annotated[Union[TaskAction, HabitAction, FocusAction], Field(discriminator="action_type")]

ACTION_SOURCES = ("task", "habit", "focus")
