"""Unit tests for the watchdog restart policy."""

from collections.abc import Callable

import anyio
import pytest


class FakeStore:
    def __init__(self) -> None:
        self.running = None

    async def resolve_running_server(self):
        return self.running


class FakeProcess:
    """Stands in for GameServerProcess; tests drive its state directly."""

    def __init__(self, *, fail_restarts: bool = False) -> None:
        from valheim_dsm.server import ObserverSet, ProcessState

        self.observers = ObserverSet()
        self.handle_store = FakeStore()
        self.state = ProcessState.OFFLINE
        self.pid: int | None = None
        self.starts = 0
        self.stops = 0
        self.fail_restarts = fail_restarts

    async def __aenter__(self) -> "FakeProcess":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def set_state(self, state) -> None:
        self.state = state
        await self.observers.on_state_change(state)

    async def start(self) -> None:
        from valheim_dsm.exceptions import ServerStartError
        from valheim_dsm.server import ProcessState

        if self.fail_restarts and self.starts > 0:
            msg = "binary missing"
            raise ServerStartError(msg)
        self.starts += 1
        self.pid = 1000 + self.starts
        await self.set_state(ProcessState.STARTING)

    async def crash(self) -> None:
        from valheim_dsm.server import ProcessState

        await self.set_state(ProcessState.CRASHED)

    async def stop(self, timeout: float | None = None) -> None:
        from valheim_dsm.server import ProcessState

        self.stops += 1
        await self.set_state(ProcessState.OFFLINE)

    async def kill(self) -> None:
        await self.stop()

    async def detach(self) -> None:
        from valheim_dsm.server import ProcessState

        await self.set_state(ProcessState.OFFLINE)


class Notifications:
    def __init__(self) -> None:
        self.restarts: list[tuple[int, int]] = []
        self.max_restarts = 0
        self.errors: list[str] = []

    async def on_state_change(self, state: object) -> None: ...

    async def on_log(self, entry: object) -> None: ...

    async def on_event(self, event: object) -> None: ...

    async def on_player_join(self, name: str) -> None: ...

    async def on_player_leave(self, name: str) -> None: ...

    async def on_error(self, error: Exception) -> None:
        self.errors.append(str(error))

    async def on_watchdog_restart(self, attempt: int, max_attempts: int) -> None:
        self.restarts.append((attempt, max_attempts))

    async def on_watchdog_max_restarts(self) -> None:
        self.max_restarts += 1


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.005)


def _policy(**overrides: object):
    from valheim_dsm.server import WatchdogPolicy

    values: dict[str, object] = {
        "max_restarts": 2,
        "restart_delay_ms": 10,
        "cooldown_period_ms": 60_000,
        "backoff_multiplier": 1.0,
    }
    values.update(overrides)
    return WatchdogPolicy(**values)  # pyright: ignore[reportArgumentType]


@pytest.mark.anyio
class TestWatchdog:
    async def test_restarts_until_max_then_gives_up(self) -> None:
        from valheim_dsm.server import Watchdog

        process = FakeProcess()
        seen = Notifications()

        async with Watchdog(process, _policy(), observers=[seen]) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()

            await process.crash()
            await _wait_for(lambda: process.starts == 2)
            await process.crash()
            await _wait_for(lambda: process.starts == 3)
            await process.crash()
            await anyio.sleep(0.05)

            assert process.starts == 3
            assert seen.restarts == [(1, 2), (2, 2)]
            assert seen.max_restarts == 1
            assert not watchdog.restart_pending

    async def test_max_delay_caps_restart_backoff(self) -> None:
        from valheim_dsm.server import Watchdog

        process = FakeProcess()
        # Uncapped, the third restart would wait 100 seconds.
        policy = _policy(max_restarts=3, backoff_multiplier=100.0, max_delay_ms=20)

        async with Watchdog(process, policy) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()

            for expected in (2, 3, 4):
                await process.crash()
                await _wait_for(lambda expected=expected: process.starts == expected)

            assert watchdog.restart_count == 3

    async def test_cooldown_resets_restart_count(self) -> None:
        from valheim_dsm.server import Watchdog

        now = [0.0]
        process = FakeProcess()
        seen = Notifications()

        async with Watchdog(
            process,
            _policy(max_restarts=1),
            observers=[seen],  # pyright: ignore[reportArgumentType]
            clock=lambda: now[0],
        ) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            await _wait_for(lambda: process.starts == 2)

            now[0] = 61.0
            await process.crash()
            await _wait_for(lambda: process.starts == 3)

            assert seen.restarts == [(1, 1), (1, 1)]
            assert seen.max_restarts == 0

    async def test_online_after_cooldown_resets_count(self) -> None:
        from valheim_dsm.server import ProcessState, Watchdog

        now = [0.0]
        process = FakeProcess()

        async with Watchdog(process, _policy(), clock=lambda: now[0]) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            await _wait_for(lambda: process.starts == 2)
            assert watchdog.restart_count == 1

            await process.set_state(ProcessState.ONLINE)
            assert watchdog.restart_count == 1

            now[0] = 120.0
            await process.set_state(ProcessState.ONLINE)
            assert watchdog.restart_count == 0

    async def test_stop_cancels_pending_restart(self) -> None:
        from valheim_dsm.server import ProcessState, Watchdog

        process = FakeProcess()

        async with Watchdog(process, _policy(restart_delay_ms=60_000)) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            assert watchdog.restart_pending

            await watchdog.stop()

            assert not watchdog.restart_pending
            assert process.state == ProcessState.OFFLINE
        assert process.starts == 1

    async def test_disabled_policy_never_restarts(self) -> None:
        from valheim_dsm.server import Watchdog

        process = FakeProcess()
        seen = Notifications()

        async with Watchdog(process, _policy(enabled=False), observers=[seen]) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            await anyio.sleep(0.05)

        assert process.starts == 1
        assert seen.restarts == []

    async def test_failed_restart_is_reported(self) -> None:
        from valheim_dsm.server import Watchdog

        process = FakeProcess(fail_restarts=True)
        seen = Notifications()

        async with Watchdog(process, _policy(), observers=[seen]) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            await _wait_for(lambda: bool(seen.errors))

        assert seen.errors == ["Restart failed: binary missing"]

    async def test_refuses_start_while_running(self) -> None:
        from valheim_dsm.exceptions import ServerAlreadyRunningError
        from valheim_dsm.server import Watchdog

        process = FakeProcess()

        async with Watchdog(process, _policy()) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            with pytest.raises(ServerAlreadyRunningError):
                await watchdog.start()

    async def test_refuses_start_when_handle_resolves(self) -> None:
        from valheim_dsm.exceptions import ServerAlreadyRunningError
        from valheim_dsm.server import ProcessHandleRecord, Watchdog

        process = FakeProcess()
        process.handle_store.running = ProcessHandleRecord(
            pid=77, started_at="2024-01-01T00:00:00Z", world="Midgard", port=2456
        )

        async with Watchdog(process, _policy()) as watchdog:  # pyright: ignore[reportArgumentType]
            with pytest.raises(ServerAlreadyRunningError) as exc_info:
                await watchdog.start()

        assert exc_info.value.pid == 77
        assert process.starts == 0

    async def test_observers_see_crash_before_restart_notification(self) -> None:
        from valheim_dsm.server import BaseServerObserver, ProcessState, Watchdog

        order: list[str] = []

        class Recorder(BaseServerObserver):
            async def on_state_change(self, state: ProcessState) -> None:
                order.append(str(state))

            async def on_watchdog_restart(self, attempt: int, max_attempts: int) -> None:
                order.append("restart")

        process = FakeProcess()

        async with Watchdog(process, _policy(restart_delay_ms=60_000), observers=[Recorder()]) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            await watchdog.stop()

        assert order == ["starting", "crashed", "restart", "offline"]

    async def test_update_policy_keeps_counters(self) -> None:
        from valheim_dsm.server import Watchdog

        process = FakeProcess()

        async with Watchdog(process, _policy()) as watchdog:  # pyright: ignore[reportArgumentType]
            await watchdog.start()
            await process.crash()
            await _wait_for(lambda: process.starts == 2)

            watchdog.update_policy(_policy(max_restarts=10))

            assert watchdog.policy.max_restarts == 10
            assert watchdog.restart_count == 1
            watchdog.reset_restart_count()
            assert watchdog.restart_count == 0
