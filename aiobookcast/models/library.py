"""Audiobookshelf library models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias


@dataclass
class Progress(DataClassORJSONMixin):
    """Listening progress of the current user for one library item."""

    book_id: Annotated[str, Alias("libraryItemId")]
    current_time: Annotated[float, Alias("currentTime")] = 0.0
    """Position in seconds."""
    duration: float = 0.0
    progress: float = 0.0
    """Fraction listened (0..1)."""
    is_finished: Annotated[bool, Alias("isFinished")] = False
    last_update: Annotated[int | None, Alias("lastUpdate")] = None
    """Epoch milliseconds of the last server-side update."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True
