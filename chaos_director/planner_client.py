"""External planner client for an OpenAI-compatible chat completions API."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai

from .commands import ALLOWED_COMMANDS
from .config import Settings
from .models import EventType

logger = logging.getLogger(__name__)


class PlannerError(RuntimeError):
    """Raised when the external planner cannot produce a plan."""


class PlannerNotEnabledError(PlannerError):
    """Raised when the planner is disabled or has no credential."""


class PlannerResponseError(PlannerError):
    """Raised when the planner answered with something unusable."""


SYSTEM_PROMPT = """You choose short, harmless-but-annoying disruption events for players in a sandbox game.
Reply with strict JSON only, shaped as {"actions": [...]} or {"commands": [...]}.
Each action is an object with a "type", an optional "target" (player name), type-specific parameters
and a short "reason".
Rules:
- Never exceed "maxSeverityNow" from the difficulty block. In a "safe" window prefer milder events,
  in a "nasty" window spicier ones.
- Players in mode OFF must never be targeted; MILD players only get severity 1 events.
- Avoid repeating a type listed in a player's "recent" history.
- Match the situation: caves or mining suit SWITCH_WHILE_MINING, SPAWN, BERSERK; the nether suits
  FIRE_UNDER or LAVA_TRAP rather than SPAWN; elytra or cliffs suit PISTON_SHOVE, LEVITATE, FORCE_RIDE;
  well-armoured players suit CAGE, ICE_RING, HONEY_TRAP; fragile players suit SLOW, BLIND, NAUSEA,
  HOTBAR_SHUFFLE.
Known types: {types}.
Examples:
{{"type": "CAGE", "target": "<name>", "material": "glass", "radius": 2, "height": 8, "duration_ticks": 200, "reason": "..."}}
{{"type": "SPAWN", "target": "<name>", "entity": "zombie", "count": 3, "radius": 2, "reason": "..."}}
{{"type": "RUBBERBAND", "target": "<name>", "delay_ticks": 40, "reason": "fake lag spike"}}
{{"type": "FLOOR_PULL", "target": "<name>", "depth": 5, "duration_ticks": 100, "reason": "surprise hole"}}
"""


def build_messages(snapshot: Dict[str, Any], max_items: int) -> List[Dict[str, str]]:
    types = ", ".join(kind.value for kind in EventType)
    system = SYSTEM_PROMPT.replace("{types}", types).replace("{{", "{").replace("}}", "}")
    user = (
        "Snapshot JSON follows. You may name a 'target'; if omitted the server picks fairly.\n"
        f"Return at most {max_items} items. Allowed commands: {', '.join(sorted(ALLOWED_COMMANDS))}.\n"
        f"{json.dumps(snapshot, sort_keys=True)}"
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def parse_plan_content(content: Optional[str]) -> Dict[str, Any]:
    """Decode the model's reply into ``{"actions": [...], "commands": [...]}``."""

    if not content or not content.strip():
        raise PlannerResponseError("Planner returned an empty message")
    try:
        body = json.loads(content)
    except json.JSONDecodeError as exc:
        raise PlannerResponseError(f"Planner reply is not JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise PlannerResponseError("Planner reply is not a JSON object")
    actions = body.get("actions")
    commands = body.get("commands")
    if actions is None and commands is None:
        raise PlannerResponseError("Planner reply has neither actions nor commands")
    if actions is not None and not isinstance(actions, list):
        raise PlannerResponseError("'actions' must be a list")
    if commands is not None and not isinstance(commands, list):
        raise PlannerResponseError("'commands' must be a list")
    return {"actions": actions or [], "commands": commands or []}


@dataclass
class PlannerConfig:
    """Connection settings for the external planner."""

    enabled: bool = True
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"
    timeout: float = 20.0
    temperature: float = 0.8

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @classmethod
    def from_env(cls, settings: Settings) -> "PlannerConfig":
        """Settings file values, overridden by environment variables."""

        timeout_env = os.getenv("CHAOS_PLANNER_TIMEOUT")
        timeout = settings.planner_timeout_seconds
        if timeout_env:
            try:
                timeout = float(timeout_env)
            except ValueError:
                logger.warning("Invalid CHAOS_PLANNER_TIMEOUT value: %s", timeout_env)
        return cls(
            enabled=settings.planner_enabled,
            base_url=os.getenv("CHAOS_PLANNER_BASE_URL", settings.planner_base_url),
            model=os.getenv("CHAOS_PLANNER_MODEL", settings.planner_model) or "gpt-4o-mini",
            api_key=os.getenv(settings.planner_api_key_env),
            api_key_env=settings.planner_api_key_env,
            timeout=max(5.0, timeout),
            temperature=max(0.0, min(1.0, settings.planner_randomness)),
        )


class PlannerClient:
    """Blocking planner call, run on a worker thread by the pipeline."""

    def __init__(self, config: PlannerConfig) -> None:
        self.config = config
        self.client: Optional[openai.OpenAI] = None
        if config.has_credential:
            self.client = openai.OpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout,
            )
            logger.info("Planner client initialised with base URL: %s", config.base_url)

    @property
    def available(self) -> bool:
        return self.config.enabled and self.client is not None

    def unavailable_reason(self) -> Optional[str]:
        if not self.config.enabled:
            return "planner disabled"
        if self.client is None:
            return f"no API key in {self.config.api_key_env}"
        return None

    def request_plan(self, snapshot: Dict[str, Any], max_items: int) -> Dict[str, Any]:
        if not self.available:
            raise PlannerNotEnabledError(self.unavailable_reason() or "planner unavailable")
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=build_messages(snapshot, max_items),
                response_format={"type": "json_object"},
                temperature=self.config.temperature,
            )
        except openai.OpenAIError as exc:
            raise PlannerError(f"Planner request failed: {exc}") from exc
        if not response.choices:
            raise PlannerResponseError("Planner returned no choices")
        return parse_plan_content(response.choices[0].message.content)


__all__ = [
    "PlannerClient",
    "PlannerConfig",
    "PlannerError",
    "PlannerNotEnabledError",
    "PlannerResponseError",
    "build_messages",
    "parse_plan_content",
]
