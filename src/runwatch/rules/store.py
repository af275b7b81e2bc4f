"""Durable persistence for alert rules.

The whole rule collection is one JSON blob under a single key. Every
mutation is a read-modify-write of that blob, serialized through one
asyncio lock so concurrent callers in this process never drop each
other's updates. Across processes the semantics are last-writer-wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from pydantic import ValidationError

from ..exceptions import RuleValidationError, StoreError
from ..storage.kv import RULES_KEY, KeyValueStore
from .models import AlertRule

logger = logging.getLogger("runwatch")

# Fields the engine or the user may never rewrite through update().
_IMMUTABLE = frozenset({"id", "created_at"})


class RulesStore:
    """CRUD and toggle over the persisted rule collection."""

    def __init__(self, kv: KeyValueStore, key: str = RULES_KEY) -> None:
        self._kv = kv
        self._key = key
        self._lock = asyncio.Lock()

    async def _load(self) -> list[AlertRule]:
        try:
            raw = await self._kv.get(self._key)
        except StoreError as e:
            logger.warning(f"Rule store unreadable, treating as empty: {e}")
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Rule store holds invalid JSON, treating as empty")
            return []
        if not isinstance(data, list):
            return []
        rules = []
        for item in data:
            try:
                rules.append(AlertRule.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed rule record: {e.error_count()} error(s)")
        return rules

    async def _save(self, rules: list[AlertRule]) -> None:
        blob = json.dumps([r.model_dump(mode="json") for r in rules])
        await self._kv.set(self._key, blob)

    async def list(self) -> list[AlertRule]:
        return await self._load()

    async def enabled(self) -> list[AlertRule]:
        return [r for r in await self._load() if r.enabled]

    async def get(self, rule_id: str) -> AlertRule | None:
        for rule in await self._load():
            if rule.id == rule_id:
                return rule
        return None

    async def add(self, rule: AlertRule) -> None:
        async with self._lock:
            rules = await self._load()
            rules.append(rule)
            await self._save(rules)

    async def update(
        self,
        rule_id: str,
        check: Callable[[AlertRule], None] | None = None,
        **fields: Any,
    ) -> AlertRule | None:
        """Shallow-merge ``fields`` into the rule. Returns None if it is gone.

        ``check`` sees the merged rule before it is saved and may raise to
        reject it. Values that fail model validation raise
        RuleValidationError and nothing is saved.
        """
        dropped = _IMMUTABLE.intersection(fields)
        if dropped:
            logger.warning(f"Ignoring update to immutable rule fields: {sorted(dropped)}")
        changes = {k: v for k, v in fields.items() if k not in _IMMUTABLE}
        async with self._lock:
            rules = await self._load()
            for i, rule in enumerate(rules):
                if rule.id == rule_id:
                    merged = {**rule.model_dump(), **changes}
                    try:
                        updated = AlertRule.model_validate(merged)
                    except ValidationError as e:
                        raise RuleValidationError(
                            f"Invalid update for rule {rule_id}: {e.error_count()} error(s)"
                        ) from e
                    if check is not None:
                        check(updated)
                    rules[i] = updated
                    await self._save(rules)
                    return updated
        return None

    async def delete(self, rule_id: str) -> bool:
        """Remove a rule. Deleting an unknown id is a no-op."""
        async with self._lock:
            rules = await self._load()
            remaining = [r for r in rules if r.id != rule_id]
            if len(remaining) == len(rules):
                return False
            await self._save(remaining)
            return True

    async def toggle(self, rule_id: str) -> AlertRule | None:
        async with self._lock:
            rules = await self._load()
            for rule in rules:
                if rule.id == rule_id:
                    rule.enabled = not rule.enabled
                    await self._save(rules)
                    return rule
        return None
