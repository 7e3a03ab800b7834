"""Allow-list gate for raw text commands returned by the planner."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence

from .models import PlayerSnapshot
from .rng import DeterministicRNG

logger = logging.getLogger(__name__)

ALLOWED_COMMANDS = frozenset(
    {"title", "playsound", "tp", "particle", "effect", "fill", "setblock", "summon", "kill"}
)
TARGET_PLACEHOLDER = "{TARGET}"


@dataclass(frozen=True)
class GatedCommand:
    text: str
    delay_ticks: int = 0


class CommandGate:
    """Filters planner command entries down to runnable instructions.

    Entries may be plain strings or objects with ``command`` and an optional
    ``delay`` in ticks. Only commands whose first word is allow-listed pass,
    and ``{TARGET}`` is replaced with a random online player's name.
    """

    def __init__(self, rng: DeterministicRNG, limit: int = 3, allowed: Iterable[str] = ALLOWED_COMMANDS) -> None:
        self._rng = rng
        self.limit = max(0, limit)
        self._allowed = frozenset(word.lower() for word in allowed)

    def filter(self, entries: Iterable[Any], online: Sequence[PlayerSnapshot]) -> List[GatedCommand]:
        gated: List[GatedCommand] = []
        for entry in entries:
            if len(gated) >= self.limit:
                break
            command = self._admit(entry, online)
            if command is not None:
                gated.append(command)
        return gated

    def _admit(self, entry: Any, online: Sequence[PlayerSnapshot]) -> GatedCommand | None:
        if isinstance(entry, str):
            text, delay = entry, 0
        elif isinstance(entry, dict):
            text = str(entry.get("command", "") or "")
            try:
                delay = max(0, int(entry.get("delay", 0) or 0))
            except (TypeError, ValueError):
                delay = 0
        else:
            logger.info("Blocked malformed command entry: %r", entry)
            return None

        text = text.strip().lstrip("/")
        if not text:
            return None
        head = text.split()[0].lower()
        if head not in self._allowed:
            logger.info("Blocked command (not allow-listed): %s", text)
            return None
        if TARGET_PLACEHOLDER in text:
            if not online:
                logger.info("No players online for command: %s", text)
                return None
            text = text.replace(TARGET_PLACEHOLDER, self._rng.choice(list(online)).name)
        return GatedCommand(text, delay)


__all__ = ["ALLOWED_COMMANDS", "CommandGate", "GatedCommand", "TARGET_PLACEHOLDER"]
