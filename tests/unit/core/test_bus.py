import pytest

from coinwise.core.bus import Bus, BusError
from coinwise.types.topics import ALL_TOPICS, T_LOG, T_PRICES

# --- Topic Management ---


def test_standard_topics_registered_on_init():
    bus = Bus()
    for topic in ALL_TOPICS:
        stats = bus.topic_stats(topic)
        assert stats.high_seq == 0
        assert stats.subscribers == 0
        assert stats.publish_count == 0
        assert stats.last_publish_utc is None


def test_topic_stats_unknown_raises():
    bus = Bus()
    with pytest.raises(KeyError):
        bus.topic_stats("unknown.topic")


def test_register_topic_is_idempotent():
    bus = Bus(topics=())
    bus.register_topic("custom")
    bus.subscribe("custom", _noop, name="a")
    bus.register_topic("custom")
    assert bus.topic_stats("custom").subscribers == 1


# --- Subscriptions ---


async def _noop(env):
    return None


def test_subscribe_unknown_topic_raises_bus_error():
    bus = Bus()
    with pytest.raises(BusError):
        bus.subscribe("missing.topic", _noop, name="test")


def test_duplicate_subscriber_name_rejected():
    bus = Bus()
    bus.subscribe(T_PRICES, _noop, name="dup")
    with pytest.raises(BusError):
        bus.subscribe(T_PRICES, _noop, name="dup")


def test_subscription_close_is_idempotent():
    bus = Bus()
    sub = bus.subscribe(T_PRICES, _noop, name="a")
    sub.close()
    sub.close()
    assert sub.closed
    assert bus.topic_stats(T_PRICES).subscribers == 0
    # name is free again
    bus.subscribe(T_PRICES, _noop, name="a")


# --- Publish ---


@pytest.mark.asyncio
async def test_publish_assigns_increasing_sequence_numbers():
    bus = Bus()
    seen = []

    async def handler(env):
        seen.append((env.topic, env.seq, env.ts, env.payload))

    bus.subscribe(T_PRICES, handler, name="h")
    assert await bus.publish(T_PRICES, 10, "a") == 1
    assert await bus.publish(T_PRICES, 20, "b") == 2
    # sequences are per topic
    assert await bus.publish(T_LOG, 30, "c") == 1

    assert seen == [(T_PRICES, 1, 10, "a"), (T_PRICES, 2, 20, "b")]
    stats = bus.topic_stats(T_PRICES)
    assert stats.publish_count == 2
    assert stats.last_publish_utc == 20


@pytest.mark.asyncio
async def test_handlers_run_in_name_order():
    bus = Bus()
    order = []

    def make(tag):
        async def handler(env):
            order.append(tag)

        return handler

    bus.subscribe(T_PRICES, make("z"), name="z")
    bus.subscribe(T_PRICES, make("a"), name="a")
    bus.subscribe(T_PRICES, make("m"), name="m")
    await bus.publish(T_PRICES, 1, None)

    assert order == ["a", "m", "z"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_delivery():
    bus = Bus()
    received = []

    async def bad(env):
        raise RuntimeError("boom")

    async def good(env):
        received.append(env.payload)

    bad_sub = bus.subscribe(T_PRICES, bad, name="a_bad")
    good_sub = bus.subscribe(T_PRICES, good, name="b_good")
    await bus.publish(T_PRICES, 1, "x")

    assert received == ["x"]
    assert bad_sub.errors == 1
    assert good_sub.delivered == 1


@pytest.mark.asyncio
async def test_publish_rejects_non_int_timestamp():
    bus = Bus()
    with pytest.raises(BusError):
        await bus.publish(T_PRICES, 1.5, None)


@pytest.mark.asyncio
async def test_publish_unknown_topic_raises():
    bus = Bus()
    with pytest.raises(BusError):
        await bus.publish("nope", 1, None)


@pytest.mark.asyncio
async def test_closed_bus_rejects_publish_and_subscribe():
    bus = Bus()
    bus.subscribe(T_PRICES, _noop, name="a")
    await bus.close()

    assert bus.topic_stats(T_PRICES).subscribers == 0
    with pytest.raises(BusError):
        await bus.publish(T_PRICES, 1, None)
    with pytest.raises(BusError):
        bus.subscribe(T_PRICES, _noop, name="b")
