"""Tests for the subscription registry."""

from __future__ import annotations

import asyncio

import pytest

from realtime_service.core.exceptions import (
    SubscriptionLimitExceeded,
    TopicDisabled,
    UnsupportedTopic,
)
from realtime_service.core.topics import SubscriptionFilter, Topic
from realtime_service.infra.realtime.subscriptions import SubscriptionRegistry


@pytest.fixture
def registry(settings) -> SubscriptionRegistry:
    return SubscriptionRegistry(settings)


class TestSubscribe:
    async def test_subscribe_creates(self, registry):
        assert await registry.subscribe("c1", "device_health") is True

        assert registry.resolve(Topic.DEVICE_HEALTH) == {"c1"}
        assert registry.topics_for("c1") == frozenset({Topic.DEVICE_HEALTH})

    async def test_resubscribe_is_idempotent(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH)

        assert await registry.subscribe("c1", Topic.DEVICE_HEALTH) is False
        assert registry.total_subscriptions == 1

    async def test_unknown_topic(self, registry):
        with pytest.raises(UnsupportedTopic):
            await registry.subscribe("c1", "weather")

    async def test_disabled_topic(self, registry):
        with pytest.raises(TopicDisabled):
            await registry.subscribe("c1", Topic.SYSTEM_STATUS)

    async def test_limit_enforced(self, make_settings):
        registry = SubscriptionRegistry(make_settings(max_subscriptions_per_client=1))
        await registry.subscribe("c1", Topic.DEVICE_HEALTH)

        with pytest.raises(SubscriptionLimitExceeded):
            await registry.subscribe("c1", Topic.PUBLISHER_STATUS)
        # Re-subscribing to a held topic does not count against the limit
        assert await registry.subscribe("c1", Topic.DEVICE_HEALTH) is False

    async def test_concurrent_subscribes_are_all_recorded(self, registry):
        await asyncio.gather(*(registry.subscribe(f"c{i}", Topic.DEVICE_HEALTH) for i in range(50)))

        assert len(registry.resolve(Topic.DEVICE_HEALTH)) == 50


class TestUnsubscribe:
    async def test_unsubscribe(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH)

        assert await registry.unsubscribe("c1", Topic.DEVICE_HEALTH) is True
        assert registry.resolve(Topic.DEVICE_HEALTH) == set()
        assert registry.total_subscriptions == 0

    async def test_unsubscribe_missing(self, registry):
        assert await registry.unsubscribe("c1", Topic.DEVICE_HEALTH) is False
        assert await registry.unsubscribe("c1", "weather") is False

    async def test_remove_connection(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH)
        await registry.subscribe("c1", Topic.PUBLISHER_STATUS)
        await registry.subscribe("c2", Topic.DEVICE_HEALTH)

        removed = await registry.remove_connection("c1")

        assert removed == {Topic.DEVICE_HEALTH, Topic.PUBLISHER_STATUS}
        assert registry.resolve(Topic.DEVICE_HEALTH) == {"c2"}
        assert registry.resolve(Topic.PUBLISHER_STATUS) == set()

    async def test_subscriber_counts_cover_all_topics(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH)

        counts = registry.subscriber_counts()

        assert counts["device_health"] == 1
        assert counts["stream_quality"] == 0
        assert len(counts) == len(Topic)

    async def test_resolve_returns_copy(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH)

        registry.resolve(Topic.DEVICE_HEALTH).add("intruder")

        assert registry.resolve(Topic.DEVICE_HEALTH) == {"c1"}


class TestFilters:
    ENCODER_A = SubscriptionFilter(device="10.0.0.5")
    ENCODER_B = SubscriptionFilter(device="10.0.0.6", channel="2")

    async def test_filters_on_one_topic_are_separate_subscriptions(self, registry):
        assert await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A) is True
        assert await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_B) is True
        assert await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A) is False

        assert registry.total_subscriptions == 2
        assert registry.subscriber_counts()["device_health"] == 1
        assert registry.filters_for("c1", Topic.DEVICE_HEALTH) == {self.ENCODER_A, self.ENCODER_B}

    async def test_filters_count_against_limit(self, make_settings):
        registry = SubscriptionRegistry(make_settings(max_subscriptions_per_client=1))
        await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A)

        with pytest.raises(SubscriptionLimitExceeded):
            await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_B)
        assert registry.filters_for("c1", Topic.DEVICE_HEALTH) == {self.ENCODER_A}

    async def test_recipients_match_payload(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A)
        await registry.subscribe("c2", Topic.DEVICE_HEALTH, self.ENCODER_B)
        await registry.subscribe("c3", Topic.DEVICE_HEALTH)

        assert registry.recipients(Topic.DEVICE_HEALTH, {"device": "10.0.0.5"}) == {"c1", "c3"}
        assert registry.recipients(Topic.DEVICE_HEALTH, {"device": "10.0.0.6", "channel": 2}) == {"c2", "c3"}
        assert registry.recipients(Topic.DEVICE_HEALTH, {"device": "10.0.0.6", "channel": "1"}) == {"c3"}
        assert registry.recipients(Topic.DEVICE_HEALTH, "not a mapping") == {"c3"}

    async def test_unsubscribe_one_filter_keeps_the_rest(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A)
        await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_B)

        assert await registry.unsubscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A) is True
        assert await registry.unsubscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A) is False

        assert registry.resolve(Topic.DEVICE_HEALTH) == {"c1"}
        assert not registry.matches("c1", Topic.DEVICE_HEALTH, {"device": "10.0.0.5"})

    async def test_unsubscribe_without_filter_drops_topic(self, registry):
        await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_A)
        await registry.subscribe("c1", Topic.DEVICE_HEALTH, self.ENCODER_B)

        assert await registry.unsubscribe("c1", Topic.DEVICE_HEALTH) is True

        assert registry.resolve(Topic.DEVICE_HEALTH) == set()
        assert registry.total_subscriptions == 0


class TestSubscriptionFilter:
    def test_wildcard_matches_anything(self):
        assert SubscriptionFilter().matches(None)
        assert SubscriptionFilter().is_wildcard

    def test_publisher_alias(self):
        criteria = SubscriptionFilter(device="10.0.0.5", publisher_id="7")

        assert criteria.matches({"device": "10.0.0.5", "publisherId": 7})
        assert not criteria.matches({"device": "10.0.0.5", "publisher_id": "8"})

    def test_to_dict_omits_unset(self):
        assert SubscriptionFilter(device="10.0.0.5").to_dict() == {"device": "10.0.0.5"}
