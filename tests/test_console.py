"""Tests for agenthost.console: the interactive request/response loop."""

from __future__ import annotations

import asyncio
import io
import json
import threading
from typing import Iterable, Optional

import httpx
import pytest
from rich.console import Console
from structlog.testing import capture_logs

from agenthost.console import ConsoleLoop
from agenthost.shutdown import ShutdownState


class _Script:
    """Feeds lines to the console, then reports end-of-file."""

    def __init__(self, lines: Iterable[str]) -> None:
        self.lines = list(lines)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> Optional[str]:
        self.prompts.append(prompt)
        if not self.lines:
            return None
        return self.lines.pop(0)


class _Agent:
    """Local message API stand-in served through httpx.MockTransport."""

    def __init__(self, statuses: Iterable[int] = (), replies: Iterable[str] = ("Namaste",)) -> None:
        self.statuses = list(statuses)
        self.replies = list(replies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return httpx.Response(status, json={"error": "boom"})
        return httpx.Response(200, json=[{"text": r, "user": "Norinder"} for r in self.replies])


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def make_loop(config, controller, watchdog, registry, output):
    def _make(read_line, agent=None, agent_id: str = "Norinder") -> ConsoleLoop:
        http = httpx.AsyncClient(transport=httpx.MockTransport(agent or _Agent()))
        return ConsoleLoop(
            config.console,
            config.server,
            controller,
            watchdog,
            registry,
            agent_id=agent_id,
            http_client=http,
            read_line=read_line,
            console=Console(file=output, markup=False, highlight=False, width=200),
        )

    return _make


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_hello_namaste_then_exit(self, make_loop, controller, output) -> None:
        agent = _Agent()
        script = _Script(["Hello", "exit"])
        loop = make_loop(script, agent)
        await asyncio.wait_for(loop.run(), timeout=5.0)

        assert output.getvalue().splitlines() == ["Norinder: Namaste"]
        assert len(agent.requests) == 1
        request = agent.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/Norinder/message"
        assert json.loads(request.content) == {
            "text": "Hello",
            "userId": "user",
            "userName": "User",
        }
        assert script.prompts[0] == "You: "
        assert controller.reason == "console_exit"
        assert controller.exit_code == 0

    @pytest.mark.asyncio
    async def test_multiple_replies_printed_in_order(self, make_loop, output) -> None:
        agent = _Agent(replies=["one", "two"])
        await asyncio.wait_for(make_loop(_Script(["Hi", "exit"]), agent).run(), timeout=5.0)
        assert output.getvalue().splitlines() == ["Norinder: one", "Norinder: two"]

    @pytest.mark.asyncio
    async def test_markup_in_replies_printed_verbatim(self, make_loop, output) -> None:
        agent = _Agent(replies=["[bold]hi[/bold]"])
        await asyncio.wait_for(make_loop(_Script(["Hi", "exit"]), agent).run(), timeout=5.0)
        assert output.getvalue().splitlines() == ["Norinder: [bold]hi[/bold]"]

    @pytest.mark.asyncio
    async def test_error_status_is_logged_and_loop_rearms(self, make_loop, output) -> None:
        agent = _Agent(statuses=[500])
        with capture_logs() as logs:
            await asyncio.wait_for(
                make_loop(_Script(["Hello", "Again", "exit"]), agent).run(), timeout=5.0
            )
        assert len(agent.requests) == 2
        failed = [e for e in logs if e["event"] == "console.request_failed"]
        assert failed[0]["status"] == 500
        lines = output.getvalue().splitlines()
        assert "500" in lines[0]
        assert lines[1] == "Norinder: Namaste"

    @pytest.mark.asyncio
    async def test_transport_error_rearms(self, make_loop, output, controller) -> None:
        calls: list[httpx.Request] = []

        def _flaky(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=[{"text": "back", "user": "Norinder"}])

        await asyncio.wait_for(
            make_loop(_Script(["a", "b", "exit"]), _flaky).run(), timeout=5.0
        )
        assert len(calls) == 2
        assert output.getvalue().splitlines()[-1] == "Norinder: back"
        assert controller.exit_code == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_and_loop_rearms(
        self, make_loop, output, controller
    ) -> None:
        calls: list[httpx.Request] = []

        def _broken(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise ValueError("bad request state")
            return httpx.Response(200, json=[{"text": "back", "user": "Norinder"}])

        with capture_logs() as logs:
            await asyncio.wait_for(
                make_loop(_Script(["a", "b", "exit"]), _broken).run(), timeout=5.0
            )
        assert len(calls) == 2
        assert any(e["event"] == "console.round_trip_failed" for e in logs)
        lines = output.getvalue().splitlines()
        assert "bad request state" in lines[0]
        assert lines[-1] == "Norinder: back"
        assert controller.reason == "console_exit"
        assert controller.exit_code == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("agent_id", "raw_path"),
        [
            ("Who?", b"/Who%3F/message"),
            ("Nori#1", b"/Nori%231/message"),
            ("Nori\tnder", b"/Nori%09nder/message"),
            ("Nori nder", b"/Nori%20nder/message"),
        ],
    )
    async def test_agent_name_is_quoted_in_path(
        self, make_loop, output, controller, agent_id: str, raw_path: bytes
    ) -> None:
        agent = _Agent()
        loop = make_loop(_Script(["hello", "again", "exit"]), agent, agent_id=agent_id)
        await asyncio.wait_for(loop.run(), timeout=5.0)
        assert [r.url.raw_path for r in agent.requests] == [raw_path, raw_path]
        lines = output.getvalue().splitlines()
        assert len(lines) == 2
        assert all(line.endswith(": Namaste") for line in lines)
        assert controller.reason == "console_exit"


class TestInput:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["exit", "EXIT", "  Exit  ", "\texit\n"])
    async def test_exit_in_any_case(self, make_loop, controller, command: str) -> None:
        agent = _Agent()
        await asyncio.wait_for(make_loop(_Script([command]), agent).run(), timeout=5.0)
        assert agent.requests == []
        assert controller.state is ShutdownState.SHUTTING_DOWN
        assert controller.exit_code == 0

    @pytest.mark.asyncio
    async def test_exit_then_teardown(self, make_loop, controller, registry) -> None:
        await asyncio.wait_for(make_loop(_Script(["exit"])).run(), timeout=5.0)
        assert await controller.shutdown() == 0
        assert controller.state is ShutdownState.TERMINATED
        assert registry.is_released("console_input")

    @pytest.mark.asyncio
    async def test_blank_lines_ignored(self, make_loop) -> None:
        agent = _Agent()
        await asyncio.wait_for(make_loop(_Script(["", "   ", "exit"]), agent).run(), timeout=5.0)
        assert agent.requests == []

    @pytest.mark.asyncio
    async def test_eof_stops_console_but_not_process(self, make_loop, controller) -> None:
        await asyncio.wait_for(make_loop(_Script([])).run(), timeout=5.0)
        assert controller.state is ShutdownState.RUNNING

    @pytest.mark.asyncio
    async def test_shutdown_does_not_wait_for_stdin(self, make_loop, controller) -> None:
        release = threading.Event()

        def _blocked(prompt: str) -> Optional[str]:
            release.wait(5.0)
            return None

        task = asyncio.create_task(make_loop(_blocked).run())
        await asyncio.sleep(0.05)
        controller.request_shutdown("sigterm", 0)
        try:
            await asyncio.wait_for(task, timeout=1.0)
        finally:
            release.set()

    @pytest.mark.asyncio
    async def test_teardown_closes_pending_read(self, make_loop, registry) -> None:
        release = threading.Event()

        def _blocked(prompt: str) -> Optional[str]:
            release.wait(5.0)
            return None

        console = make_loop(_blocked)
        task = asyncio.create_task(console.run())
        await asyncio.sleep(0.05)
        assert registry.console_input is console
        await registry.cleanup()
        try:
            await asyncio.wait_for(task, timeout=1.0)
        finally:
            release.set()
        assert console.closed

    @pytest.mark.asyncio
    async def test_does_not_start_after_shutdown(self, make_loop, controller) -> None:
        script = _Script(["Hello"])
        controller.request_shutdown("sigint", 0)
        await make_loop(script).run()
        assert script.prompts == []


class TestPreflight:
    @pytest.mark.asyncio
    async def test_critical_memory_blocks_round_trip(self, make_loop, controller, gauge) -> None:
        gauge.mb = 500
        agent = _Agent()
        await asyncio.wait_for(make_loop(_Script(["Hello"]), agent).run(), timeout=5.0)
        assert agent.requests == []
        assert controller.exit_code == 1
        assert controller.reason == "memory_critical"
