from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from ..models import PosterAction


@dataclass(frozen=True, slots=True)
class WebhookRules:
    allowed_actions: tuple[PosterAction, ...]
    persist_actions: frozenset[PosterAction]
    enrich_write_offs: bool = True

    @classmethod
    def load_from_dir(cls, rules_dir: Path) -> "WebhookRules":
        path = rules_dir / "webhook.yml"
        data = _load_yaml(path) or {}

        allowed = tuple(_actions(data.get("allowed_actions"), path, "allowed_actions"))
        persist = frozenset(_actions(data.get("persist_actions"), path, "persist_actions"))

        if not allowed:
            raise ValueError(f"{path}: allowed_actions must not be empty.")
        if not persist <= set(allowed):
            extra = sorted(a.value for a in persist - set(allowed))
            raise ValueError(f"{path}: persist_actions not in allowed_actions: {', '.join(extra)}")

        return cls(
            allowed_actions=allowed,
            persist_actions=persist,
            enrich_write_offs=bool(data.get("enrich_write_offs", True)),
        )

    def is_allowed(self, action: str) -> bool:
        return action in {a.value for a in self.allowed_actions}

    def should_persist(self, action: PosterAction) -> bool:
        return action in self.persist_actions


def _actions(values: object, path: Path, key: str) -> list[PosterAction]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValueError(f"{path}: {key} must be a list.")
    actions = []
    for value in values:
        try:
            actions.append(PosterAction(str(value)))
        except ValueError:
            raise ValueError(f"{path}: unknown action {value!r} in {key}.") from None
    return actions


def _load_yaml(path: Path) -> dict | None:
    if not path.exists():
        raise FileNotFoundError(str(path))
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping at {path}, got {type(data).__name__}.")
    return data
