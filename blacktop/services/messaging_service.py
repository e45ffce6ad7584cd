"""In-process topic publish/subscribe bus with bounded history and request/reply."""

import asyncio
import inspect
import logging
import re
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Pattern, Union

import psutil

from blacktop.constants import MESSAGING_HISTORY_LIMIT, MESSAGING_REQUEST_TIMEOUT_MS
from blacktop.errors import BlacktopError, RequestTimeoutError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]

RESPONSE_TOPIC_MARKER = ":response:"
_RESPONSE_ID_PREFIX = "req_"


@dataclass
class Subscription:
    """A handler registered on an exact topic."""

    topic: str
    handler: MessageHandler
    id: str


@dataclass
class PatternSubscription:
    """A handler registered on a glob pattern (``*`` matches any characters)."""

    pattern: str
    handler: MessageHandler
    id: str
    regex: Pattern = field(init=False, repr=False)

    def __post_init__(self):
        self.regex = re.compile(re.escape(self.pattern).replace(r"\*", ".*"))

    def matches(self, topic: str) -> bool:
        return self.regex.fullmatch(topic) is not None


class MessagingService:
    """Topic-based pub/sub bus.

    Topics exist implicitly while they have subscribers. Every published message
    is stamped with ``_timestamp`` and ``_topic`` and kept in a per-topic history
    ring of ``history_limit`` entries, whether or not anyone is subscribed.
    Subscriber failures are logged per handler and never stop delivery to the
    other subscribers.
    """

    def __init__(
        self,
        history_limit: int = MESSAGING_HISTORY_LIMIT,
        default_timeout_ms: int = MESSAGING_REQUEST_TIMEOUT_MS,
    ):
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.history_limit = history_limit
        self.default_timeout_ms = default_timeout_ms
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._pattern_subscriptions: List[PatternSubscription] = []
        self._history: Dict[str, Deque[Dict[str, Any]]] = {}
        # response topic -> future of the waiting request
        self._pending: Dict[str, asyncio.Future] = {}
        self._tasks: set = set()
        self._published = 0

    # ------------------------------------------------------------------
    # Publish / subscribe
    # ------------------------------------------------------------------

    async def publish(self, topic: str, message: Any) -> None:
        """Publish a message to a topic.

        Args:
            topic: Topic name
            message: Dict payload (other values are wrapped as ``{"data": value}``)
        """
        enriched = self._enrich(topic, message)
        self._published += 1

        if topic in self._pending:
            self._resolve_pending(topic, enriched)
            return

        self._add_to_history(topic, enriched)

        targets: List[Union[Subscription, PatternSubscription]] = list(
            self._subscriptions.get(topic, [])
        )
        targets.extend(p for p in self._pattern_subscriptions if p.matches(topic))

        if not targets:
            logger.debug(f"No subscribers found for topic: {topic}")
            return

        await asyncio.gather(*(self._deliver(topic, sub, dict(enriched)) for sub in targets))
        logger.debug(f"Message published to {len(targets)} subscriber(s) on topic: {topic}")

    def subscribe(self, topic: str, handler: MessageHandler) -> str:
        """Register a handler on a topic.

        Returns:
            Subscription id
        """
        subscription = Subscription(topic=topic, handler=handler, id=self._generate_id("sub"))
        subscribers = self._subscriptions.setdefault(topic, [])
        subscribers.append(subscription)
        logger.info(
            f"Subscribed to topic: {topic} "
            f"(id={subscription.id}, total_subscribers={len(subscribers)})"
        )
        return subscription.id

    def unsubscribe(self, topic: str, handler: Optional[MessageHandler] = None) -> int:
        """Remove one handler, or every handler when none is given.

        History of the topic is kept.

        Returns:
            Number of subscriptions removed
        """
        subscribers = self._subscriptions.get(topic, [])
        if handler is None:
            removed = len(subscribers)
            remaining: List[Subscription] = []
        else:
            remaining = [s for s in subscribers if s.handler != handler]
            removed = len(subscribers) - len(remaining)

        if remaining:
            self._subscriptions[topic] = remaining
        else:
            self._subscriptions.pop(topic, None)

        if removed:
            logger.info(f"Unsubscribed {removed} handler(s) from topic: {topic}")
        return removed

    def subscribe_pattern(self, pattern: str, handler: MessageHandler) -> str:
        """Register a handler for every topic matching a glob pattern.

        Returns:
            Subscription id
        """
        subscription = PatternSubscription(pattern=pattern, handler=handler, id=self._generate_id("sub"))
        self._pattern_subscriptions.append(subscription)
        logger.info(f"Subscribed to pattern: {pattern} (id={subscription.id})")
        return subscription.id

    def unsubscribe_pattern(self, pattern: str, handler: Optional[MessageHandler] = None) -> int:
        before = len(self._pattern_subscriptions)
        self._pattern_subscriptions = [
            p
            for p in self._pattern_subscriptions
            if not (p.pattern == pattern and (handler is None or p.handler == handler))
        ]
        return before - len(self._pattern_subscriptions)

    async def broadcast(self, message: Any) -> None:
        """Publish the same payload to every topic that has subscribers."""
        topics = self.get_topics()
        await asyncio.gather(*(self.publish(topic, message) for topic in topics), return_exceptions=True)
        logger.info(f"Broadcasted message to {len(topics)} topics")

    # ------------------------------------------------------------------
    # Request / reply
    # ------------------------------------------------------------------

    async def request(self, topic: str, message: Any, timeout_ms: Optional[int] = None) -> Dict[str, Any]:
        """Publish a request and wait for the first reply.

        The request carries ``_response_id`` and ``_response_topic``; responders
        answer with :meth:`reply`. A reply arriving after the timeout is dropped.

        Args:
            topic: Topic the responder listens on
            message: Request payload
            timeout_ms: How long to wait for a reply

        Returns:
            The (stamped) reply message

        Raises:
            RequestTimeoutError: No reply arrived in time
        """
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms

        response_id = self._generate_id(_RESPONSE_ID_PREFIX.rstrip("_"))
        response_topic = f"{topic}{RESPONSE_TOPIC_MARKER}{response_id}"

        waiter = asyncio.get_running_loop().create_future()
        self._pending[response_topic] = waiter

        payload = dict(message) if isinstance(message, Mapping) else {"data": message}
        payload["_response_id"] = response_id
        payload["_response_topic"] = response_topic

        try:
            # Delivery runs alongside the timer so a slow subscriber cannot stretch the timeout
            self._spawn(self.publish(topic, payload))
            return await asyncio.wait_for(waiter, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"Request to {topic} timed out after {timeout_ms}ms")
            raise RequestTimeoutError(topic, timeout_ms) from None
        finally:
            self._pending.pop(response_topic, None)

    async def reply(self, original_message: Mapping[str, Any], response: Any) -> None:
        """Answer a message received through :meth:`request`."""
        response_topic = original_message.get("_response_topic") if isinstance(original_message, Mapping) else None
        if not response_topic:
            logger.warning(f"Cannot reply to message without response topic: {original_message!r}")
            return
        if response_topic not in self._pending:
            logger.debug(f"Dropping reply on {response_topic}: no request is waiting")
            return
        await self.publish(response_topic, response)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_message_history(self, topic: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        history = list(self._history.get(topic, ()))
        if limit is not None:
            return history[-limit:] if limit > 0 else []
        return history

    def clear_history(self, topic: Optional[str] = None) -> None:
        if topic:
            self._history.pop(topic, None)
            logger.info(f"Cleared message history for topic: {topic}")
        else:
            self._history.clear()
            logger.info("Cleared all message history")

    def get_topics(self) -> List[str]:
        return list(self._subscriptions.keys())

    def get_subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, []))

    def get_all_subscriptions(self) -> Dict[str, int]:
        return {topic: len(subs) for topic, subs in self._subscriptions.items()}

    def get_stats(self) -> Dict[str, Any]:
        return {
            "totalTopics": len(self._subscriptions),
            "totalSubscriptions": sum(len(s) for s in self._subscriptions.values()),
            "patternSubscriptions": len(self._pattern_subscriptions),
            "totalMessages": sum(len(h) for h in self._history.values()),
            "publishedMessages": self._published,
            "pendingRequests": len(self._pending),
            "historyLimit": self.history_limit,
            "memoryUsage": psutil.Process().memory_info().rss,
        }

    def shutdown(self) -> None:
        """Drop every subscription, pending request and history entry."""
        for waiter in self._pending.values():
            if not waiter.done():
                waiter.set_exception(BlacktopError("Messaging service shut down"))
        self._pending.clear()
        self._subscriptions.clear()
        self._pattern_subscriptions.clear()
        self._history.clear()
        logger.info("Messaging service shutdown completed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _enrich(topic: str, message: Any) -> Dict[str, Any]:
        enriched = dict(message) if isinstance(message, Mapping) else {"data": message}
        enriched["_timestamp"] = datetime.now(timezone.utc)
        enriched["_topic"] = topic
        return enriched

    def _add_to_history(self, topic: str, message: Dict[str, Any]) -> None:
        history = self._history.get(topic)
        if history is None:
            history = self._history[topic] = deque(maxlen=self.history_limit)
        history.append(message)

    def _resolve_pending(self, topic: str, message: Dict[str, Any]) -> None:
        waiter = self._pending[topic]
        if waiter.done():
            return
        waiter.set_result(message)

    async def _deliver(self, topic: str, subscription, message: Dict[str, Any]) -> None:
        try:
            result = subscription.handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Error in message handler for topic {topic} "
                f"(subscription={subscription.id}): {e}"
            )

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _generate_id(prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex[:12]}"
