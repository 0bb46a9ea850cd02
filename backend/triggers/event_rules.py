"""In-process event rules.

The executor fires named events (``task_created``) after side effects so
unrelated automation can react. Firing is fire-and-forget: each matching
rule runs as its own background task and its failures are only logged.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)

RuleCallback = Callable[[str, dict], Awaitable[None]]


@dataclass
class EventRule:
    """A subscription of one callback to one event name.

    ``filter`` follows simple key/value rules:
    - Exact match: {"status": "paid"} → payload["status"] == "paid"
    - Greater than: {"amount_gt": 100} → payload["amount"] > 100
    - Less than: {"amount_lt": 50} → payload["amount"] < 50
    - Contains: {"tags_contains": "urgent"} → "urgent" in payload["tags"]
    """
    event_name: str
    callback: RuleCallback
    filter: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))


class EventRuleBus:
    """Registry of event rules with fire-and-forget dispatch."""

    def __init__(self):
        self._rules: dict[str, list[EventRule]] = {}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(
        self,
        event_name: str,
        callback: RuleCallback,
        filter_rules: Optional[dict[str, Any]] = None,
    ) -> EventRule:
        rule = EventRule(event_name=event_name, callback=callback, filter=filter_rules or {})
        self._rules.setdefault(event_name, []).append(rule)
        return rule

    def unsubscribe(self, rule_id: str) -> bool:
        for name, rules in self._rules.items():
            kept = [r for r in rules if r.id != rule_id]
            if len(kept) != len(rules):
                self._rules[name] = kept
                return True
        return False

    def rules_for(self, event_name: str) -> list[EventRule]:
        return list(self._rules.get(event_name, []))

    async def fire(self, event_name: str, payload: dict) -> int:
        """Schedule every matching rule. Returns how many were scheduled.

        Never raises: a filter that cannot be evaluated against the payload
        skips its rule.
        """
        scheduled = 0
        for rule in self.rules_for(event_name):
            try:
                matched = not rule.filter or self._matches_filter(payload, rule.filter)
            except Exception as exc:
                logger.warning("Event filter failed", event_name=event_name, rule_id=rule.id, error=str(exc))
                continue
            if not matched:
                logger.debug("Event filtered out", event_name=event_name, rule_id=rule.id)
                continue
            task = asyncio.create_task(self._run_rule(rule, event_name, payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            scheduled += 1
        return scheduled

    async def _run_rule(self, rule: EventRule, event_name: str, payload: dict) -> None:
        try:
            await rule.callback(event_name, payload)
        except Exception as exc:
            logger.error("Event rule failed", event_name=event_name, rule_id=rule.id, error=str(exc))

    async def drain(self) -> None:
        """Wait for all dispatched rule callbacks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    def _matches_filter(payload: dict, filter_rules: dict) -> bool:
        """Check if a payload matches filter rules (see ``EventRule``)."""
        for key, expected in filter_rules.items():
            if key.endswith("_gt"):
                name = key[:-3]
                if name not in payload or payload[name] <= expected:
                    return False
            elif key.endswith("_lt"):
                name = key[:-3]
                if name not in payload or payload[name] >= expected:
                    return False
            elif key.endswith("_contains"):
                name = key[:-9]
                if name not in payload or expected not in payload[name]:
                    return False
            else:
                if key not in payload or payload[key] != expected:
                    return False
        return True
