import asyncio
import logging
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Callable, Any
from collections import deque

from core.models import ThreatRecord
from .models import AlertRule, AlertEvent

logger = logging.getLogger(__name__)


class Subscriber(NamedTuple):
    owner_id: str
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop


def _deliver(queue: asyncio.Queue, event: AlertEvent) -> None:
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        logger.warning("Alert stream queue full, dropping %s", event.id)


class AlertEngine:
    """
    Evaluates threats against persisted alert rules.

    Rule state (trigger count, cooldown, recent matches) lives in storage;
    the engine keeps only the fired-event history and counters in memory.
    """

    def __init__(self, storage, history_size: int = 100, stream_queue_size: int = 100):
        self._storage = storage
        self._stream_queue_size = stream_queue_size
        self._subscribers: List[Subscriber] = []
        self._history: deque = deque(maxlen=history_size)
        self._callbacks: List[Callable[[AlertEvent], None]] = []
        self._stats = {
            "evaluations": 0,
            "triggers": 0,
            "suppressed": 0,
            "start_time": datetime.now()
        }

    # =========================================================================
    # Rule Management
    # =========================================================================

    def add_rule(self, rule: AlertRule) -> AlertRule:
        return self._storage.save_alert(rule)

    def remove_rule(self, rule_id: str) -> bool:
        return self._storage.delete_alert(rule_id)

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        return self._storage.get_alert(rule_id)

    def get_rules(self, owner_id: str = None) -> List[AlertRule]:
        return self._storage.get_alerts(owner_id=owner_id)

    def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> Optional[AlertRule]:
        """Apply settings changes; trigger state is not touched"""
        def apply(rule: AlertRule) -> bool:
            for key, value in changes.items():
                setattr(rule, key, value)
            rule.updated_at = datetime.now()
            return True

        rule, _ = self._storage.update_alert(rule_id, apply)
        return rule

    def set_active(self, rule_id: str, active: bool) -> Optional[AlertRule]:
        def apply(rule: AlertRule) -> bool:
            rule.is_active = active
            rule.updated_at = datetime.now()
            return True

        rule, _ = self._storage.update_alert(rule_id, apply)
        return rule

    def reset_cooldown(self, rule_id: str) -> Optional[AlertRule]:
        def apply(rule: AlertRule) -> bool:
            if rule.next_trigger_allowed is None:
                return False
            rule.next_trigger_allowed = None
            return True

        rule, _ = self._storage.update_alert(rule_id, apply)
        return rule

    def mark_notified(self, rule_id: str, threat_id: str) -> Optional[AlertRule]:
        def apply(rule: AlertRule) -> bool:
            changed = False
            for match in rule.recent_matches:
                if match.threat_id == threat_id and not match.notified:
                    match.notified = True
                    changed = True
            return changed

        rule, _ = self._storage.update_alert(rule_id, apply)
        return rule

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, threat: ThreatRecord, now: Optional[datetime] = None) -> List[AlertEvent]:
        """
        Fire every active rule that matches threat.

        Each rule is re-read, checked and recorded inside one storage
        transaction, so simultaneous matches of the same rule are counted
        once each and cannot slip past the cooldown.
        """
        now = now or datetime.now()
        triggered = []
        self._stats["evaluations"] += 1

        for candidate in self._storage.get_alerts(active_only=True):
            def apply(rule: AlertRule) -> bool:
                if not rule.should_trigger(threat, now):
                    return False
                rule.record_trigger(threat.id, now)
                return True

            rule, fired = self._storage.update_alert(candidate.id, apply)
            if rule is None or not fired:
                self._stats["suppressed"] += 1
                continue

            event = AlertEvent.from_match(rule, threat, now)
            triggered.append(event)
            self._history.append(event)
            self._stats["triggers"] += 1
            logger.info("Alert %s fired for %s %s", rule.id, event.threat_type, threat.value)

            self._publish(event)

            for callback in self._callbacks:
                try:
                    callback(event)
                except Exception:
                    logger.exception("Alert callback failed for %s", event.id)

        return triggered

    def test(self, threat: ThreatRecord, rules: List[AlertRule], now: Optional[datetime] = None) -> List[str]:
        """Dry run: ids of rules that would fire, nothing recorded"""
        now = now or datetime.now()
        return [rule.id for rule in rules if rule.should_trigger(threat, now)]

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, owner_id: str) -> asyncio.Queue:
        """
        Register a stream listener for owner_id's events.

        Must be called from the event loop that will read the queue.
        Each listener gets its own bounded queue; call unsubscribe when done.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._stream_queue_size)
        self._subscribers.append(Subscriber(owner_id, queue, asyncio.get_running_loop()))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers = [s for s in self._subscribers if s.queue is not queue]

    def _publish(self, event: AlertEvent) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        for sub in list(self._subscribers):
            if sub.owner_id != event.owner_id:
                continue
            if sub.loop is running:
                _deliver(sub.queue, event)
            else:
                sub.loop.call_soon_threadsafe(_deliver, sub.queue, event)

    async def get_event(self, queue: asyncio.Queue, timeout: float = None) -> Optional[AlertEvent]:
        try:
            if timeout:
                return await asyncio.wait_for(queue.get(), timeout)
            return await queue.get()
        except asyncio.TimeoutError:
            return None

    def get_history(self, limit: int = 50, owner_id: str = None) -> List[AlertEvent]:
        history = list(self._history)
        history.reverse()
        if owner_id is not None:
            history = [e for e in history if e.owner_id == owner_id]
        return history[:limit]

    def on_alert(self, callback: Callable[[AlertEvent], None]) -> None:
        self._callbacks.append(callback)

    def clear_history(self, owner_id: str = None) -> None:
        """Drop fired events, only those of owner_id when given"""
        if owner_id is None:
            self._history.clear()
            return
        self._history = deque(
            (e for e in self._history if e.owner_id != owner_id),
            maxlen=self._history.maxlen
        )

    def stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._stats["start_time"]).total_seconds()
        rules = self._storage.get_alerts()
        return {
            **self._stats,
            "start_time": self._stats["start_time"].isoformat(),
            "uptime_seconds": round(uptime, 2),
            "rules_count": len(rules),
            "active_rules": sum(1 for r in rules if r.is_active),
            "history_size": len(self._history),
            "subscribers": len(self._subscribers)
        }


_alert_engine: Optional[AlertEngine] = None


def get_alert_engine() -> AlertEngine:
    global _alert_engine
    if _alert_engine is None:
        from db import get_storage
        _alert_engine = AlertEngine(get_storage())
    return _alert_engine
