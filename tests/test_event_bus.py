from agents.event_bus import GameEventBus, GameEventType


def test_publish_delivers_in_subscription_order():
    bus = GameEventBus("TEST01")
    seen = []
    bus.subscribe(lambda event, payload: seen.append(("first", event, payload["day"])))
    bus.subscribe(lambda event, payload: seen.append(("second", event, payload["day"])))

    bus.publish(GameEventType.DAY_PHASE_STARTED, {"day": 3})
    assert seen == [
        ("first", GameEventType.DAY_PHASE_STARTED, 3),
        ("second", GameEventType.DAY_PHASE_STARTED, 3),
    ]


def test_failing_subscriber_does_not_starve_the_rest(caplog):
    bus = GameEventBus("TEST01")
    seen = []

    def broken(event, payload):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(lambda event, payload: seen.append(event))

    bus.publish(GameEventType.GAME_STARTED, {"all_players": []})
    assert seen == [GameEventType.GAME_STARTED]
    assert "failed on gameStarted" in caplog.text


def test_unsubscribe_and_duplicate_subscribe():
    bus = GameEventBus("TEST01")
    seen = []

    def handler(event, payload):
        seen.append(event)

    bus.subscribe(handler)
    bus.subscribe(handler)
    bus.publish(GameEventType.VOTE_RECEIVED, {})
    assert len(seen) == 1

    bus.unsubscribe(handler)
    bus.publish(GameEventType.VOTE_RECEIVED, {})
    assert len(seen) == 1


def test_no_replay_for_late_subscribers():
    bus = GameEventBus("TEST01")
    bus.publish(GameEventType.PLAYER_ELIMINATED, {"eliminated_player_id": "bob"})
    seen = []
    bus.subscribe(lambda event, payload: seen.append(event))
    assert seen == []
