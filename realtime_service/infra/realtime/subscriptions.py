"""Subscription registry mapping topics to connection ids."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from realtime_service.core.exceptions import (
    SubscriptionLimitExceeded,
    TopicDisabled,
    UnsupportedTopic,
)
from realtime_service.core.topics import ALL_EVENTS, SubscriptionFilter, Topic
from realtime_service.infra.metrics.prometheus import realtime_subscriptions

if TYPE_CHECKING:
    from realtime_service.core.settings.realtime import RealtimeSettings

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Tracks which connections want which topics.

    A subscription is a (topic, filter) pair. A connection may hold several
    filters for one topic, for example one per device; each counts against
    ``max_subscriptions_per_client``. Only connection ids are stored; the
    connection manager owns the connections themselves. Every mutation runs
    under one lock so concurrent subscribe/unsubscribe/remove calls never
    lose an update.
    """

    def __init__(self, settings: RealtimeSettings) -> None:
        self._settings = settings
        self._lock = asyncio.Lock()
        # topic -> connection ids
        self._by_topic: dict[Topic, set[str]] = defaultdict(set)
        # connection id -> topic -> filters
        self._by_connection: dict[str, dict[Topic, set[SubscriptionFilter]]] = defaultdict(dict)

    def _parse(self, topic: Topic | str) -> Topic:
        parsed = Topic.parse(topic)
        if parsed is None:
            raise UnsupportedTopic(topic)
        return parsed

    async def subscribe(
        self,
        connection_id: str,
        topic: Topic | str,
        criteria: SubscriptionFilter | None = None,
    ) -> bool:
        """Subscribe a connection to a topic, optionally narrowed by ``criteria``.

        Returns:
            True if a new subscription was created, False if it already existed.

        Raises:
            UnsupportedTopic: Unknown topic name.
            TopicDisabled: Topic switched off in configuration.
            SubscriptionLimitExceeded: Connection holds the maximum already.
        """
        parsed = self._parse(topic)
        if not self._settings.is_enabled(parsed):
            raise TopicDisabled(parsed)
        criteria = criteria or ALL_EVENTS

        async with self._lock:
            topics = self._by_connection[connection_id]
            filters = topics.get(parsed)
            if filters is not None and criteria in filters:
                return False
            limit = self._settings.max_subscriptions_per_client
            if sum(len(f) for f in topics.values()) >= limit:
                raise SubscriptionLimitExceeded(connection_id, limit)

            topics.setdefault(parsed, set()).add(criteria)
            self._by_topic[parsed].add(connection_id)
            realtime_subscriptions.labels(topic=parsed.value).set(len(self._by_topic[parsed]))

        logger.debug(
            "Subscribed",
            extra={"connection_id": connection_id, "topic": parsed.value, **criteria.to_dict()},
        )
        return True

    async def unsubscribe(
        self,
        connection_id: str,
        topic: Topic | str,
        criteria: SubscriptionFilter | None = None,
    ) -> bool:
        """Remove one subscription, or every filter on the topic when ``criteria`` is None.

        Returns False when there was nothing to remove.
        """
        parsed = Topic.parse(topic)
        if parsed is None:
            return False

        async with self._lock:
            topics = self._by_connection.get(connection_id)
            if not topics or parsed not in topics:
                return False
            filters = topics[parsed]
            if criteria is None:
                filters.clear()
            elif criteria in filters:
                filters.discard(criteria)
            else:
                return False

            if not filters:
                del topics[parsed]
                self._discard_subscriber(parsed, connection_id)
            if not topics:
                del self._by_connection[connection_id]

        return True

    async def remove_connection(self, connection_id: str) -> set[Topic]:
        """Drop every subscription held by a connection and return its topics."""
        async with self._lock:
            topics = set(self._by_connection.pop(connection_id, {}))
            for topic in topics:
                self._discard_subscriber(topic, connection_id)
        return topics

    def _discard_subscriber(self, topic: Topic, connection_id: str) -> None:
        subscribers = self._by_topic.get(topic)
        if subscribers is None:
            return
        subscribers.discard(connection_id)
        if not subscribers:
            del self._by_topic[topic]
        realtime_subscriptions.labels(topic=topic.value).set(len(subscribers))

    def resolve(self, topic: Topic | str) -> set[str]:
        """Connection ids currently subscribed to ``topic`` (a copy)."""
        parsed = Topic.parse(topic)
        if parsed is None:
            return set()
        return set(self._by_topic.get(parsed, ()))

    def recipients(self, topic: Topic, payload: Any) -> set[str]:
        """Connection ids with at least one filter on ``topic`` matching ``payload``."""
        return {
            connection_id
            for connection_id in self._by_topic.get(topic, ())
            if self.matches(connection_id, topic, payload)
        }

    def matches(self, connection_id: str, topic: Topic, payload: Any) -> bool:
        filters = self._by_connection.get(connection_id, {}).get(topic, ())
        return any(criteria.matches(payload) for criteria in filters)

    def topics_for(self, connection_id: str) -> frozenset[Topic]:
        return frozenset(self._by_connection.get(connection_id, ()))

    def filters_for(self, connection_id: str, topic: Topic) -> frozenset[SubscriptionFilter]:
        return frozenset(self._by_connection.get(connection_id, {}).get(topic, ()))

    def subscriber_counts(self) -> dict[str, int]:
        """Subscriber count for every known topic, zero included."""
        return {topic.value: len(self._by_topic.get(topic, ())) for topic in Topic}

    @property
    def total_subscriptions(self) -> int:
        return sum(
            len(filters)
            for topics in self._by_connection.values()
            for filters in topics.values()
        )
