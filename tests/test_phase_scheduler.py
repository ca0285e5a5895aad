import asyncio

from models.game import Phase
from agents.phase_scheduler import PhaseScheduler, REASON_ALL_VOTED, REASON_TIMER_EXPIRED

from conftest import RecordingNotifier, make_room


def _recorder():
    calls = []

    def callback(room, phase, reason):
        calls.append((phase, reason))

    return calls, callback


async def test_countdown_fires_once_with_timer_reason(fast_settings):
    scheduler = PhaseScheduler(fast_settings)
    room = make_room()
    calls, callback = _recorder()

    scheduler.arm(room, callback, duration=0.01)
    assert room.timer is not None
    assert 0 < scheduler.time_remaining(room) <= 0.01
    await asyncio.sleep(0.05)

    assert calls == [(Phase.VOTING, REASON_TIMER_EXPIRED)]
    assert room.timer is None
    assert scheduler.time_remaining(room) == 0.0


async def test_rearming_cancels_the_previous_countdown(fast_settings):
    scheduler = PhaseScheduler(fast_settings)
    room = make_room()
    calls, callback = _recorder()

    scheduler.arm(room, callback, duration=0.01)
    first = room.timer
    scheduler.arm(room, callback, duration=0.02)
    await asyncio.sleep(0.06)

    assert first.cancelled()
    assert len(calls) == 1


async def test_expiry_after_phase_change_is_a_noop(fast_settings):
    scheduler = PhaseScheduler(fast_settings)
    room = make_room()
    calls, callback = _recorder()

    scheduler.arm(room, callback, duration=0.01)
    room.phase = Phase.NIGHT
    await asyncio.sleep(0.05)
    assert calls == []


async def test_early_completion_resolves_once(fast_settings):
    scheduler = PhaseScheduler(fast_settings)
    notifier = RecordingNotifier()
    room = make_room()
    calls, callback = _recorder()

    scheduler.arm(room, callback, duration=0.03)
    countdown = room.timer
    assert scheduler.complete_early(room, REASON_ALL_VOTED, callback, notifier)
    assert room.resolving
    # a second completion signal during the grace delay changes nothing
    assert not scheduler.complete_early(room, REASON_ALL_VOTED, callback, notifier)

    await asyncio.sleep(0.08)
    assert countdown.cancelled()
    assert calls == [(Phase.VOTING, REASON_ALL_VOTED)]
    assert notifier.named("phase_ending_early") == [(REASON_ALL_VOTED,)]
    assert not room.resolving
    assert room.timer is None


async def test_cancel_during_grace_drops_resolution(fast_settings):
    scheduler = PhaseScheduler(fast_settings)
    room = make_room()
    calls, callback = _recorder()

    scheduler.complete_early(room, REASON_ALL_VOTED, callback)
    scheduler.cancel(room)
    await asyncio.sleep(0.05)
    assert calls == []


async def test_failing_transition_is_logged(fast_settings, caplog):
    scheduler = PhaseScheduler(fast_settings)
    room = make_room()

    def broken(room, phase, reason):
        raise RuntimeError("boom")

    scheduler.arm(room, broken, duration=0.01)
    await asyncio.sleep(0.05)
    assert "Phase transition from voting failed" in caplog.text


def test_durations_follow_settings(fast_settings):
    scheduler = PhaseScheduler(fast_settings)
    assert scheduler.duration_for(Phase.DAY) == fast_settings.day_duration
    assert scheduler.duration_for(Phase.VOTING) == fast_settings.voting_duration
    assert scheduler.duration_for(Phase.NIGHT) == fast_settings.night_duration
    assert scheduler.duration_for(Phase.LOBBY) is None
