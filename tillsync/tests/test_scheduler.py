from tillsync.app.scheduler import VirtualScheduler


def test_call_later_fires_once_when_due():
    sched = VirtualScheduler()
    fired = []
    sched.call_later(5, lambda: fired.append(sched.now))
    sched.advance(4.9)
    assert fired == []
    sched.advance(0.2)
    assert fired == [5]
    sched.advance(100)
    assert fired == [5]


def test_cancelled_timer_never_fires():
    sched = VirtualScheduler()
    fired = []
    handle = sched.call_later(1, lambda: fired.append(1))
    handle.cancel()
    sched.advance(10)
    assert fired == []
    assert sched.pending() == 0


def test_call_every_repeats_until_cancelled():
    sched = VirtualScheduler()
    ticks = []
    handle = sched.call_every(30, lambda: ticks.append(sched.now))
    sched.advance(95)
    assert ticks == [30, 60, 90]
    handle.cancel()
    sched.advance(60)
    assert len(ticks) == 3


def test_failing_callback_does_not_stop_the_clock():
    sched = VirtualScheduler()
    fired = []

    def boom():
        raise RuntimeError("boom")

    sched.call_later(1, boom)
    sched.call_later(2, lambda: fired.append(2))
    sched.advance(3)
    assert fired == [2]
