"""
Tests for the page-side detector state machine and the async API client
"""
import asyncio
import json

import httpx
import pytest

from escape_proctor.client.detector import SessionDetector, IDLE, HIDDEN, COOLDOWN
from escape_proctor.client.notifier import (
    EscapeClient, RetryPolicy, Penalty, Ignored, Failed, run_heartbeats,
)


class TestSessionDetector:

    @pytest.fixture
    def detector(self):
        return SessionDetector(min_hidden_ms=300, cooldown_ms=3000)

    def test_defaults_come_from_config(self):
        d = SessionDetector()
        assert (d.min_hidden_ms, d.cooldown_ms) == (300, 3000)

    def test_hide_show_reports_duration(self, detector):
        detector.visibility_hidden(1000)
        assert detector.state == HIDDEN
        assert detector.visibility_visible(6000) == 5000
        assert detector.state == COOLDOWN

    def test_redundant_signals_collapse(self, detector):
        """blur, visibilitychange and pagehide for one absence keep the earliest start"""
        detector.blur(1000)
        detector.visibility_hidden(1010)
        detector.pagehide(1020)
        assert detector.visibility_visible(5000) == 4000
        assert detector.focus(5005) is None

    def test_brief_flicker_not_reported(self, detector):
        detector.visibility_hidden(1000)
        assert detector.visibility_visible(1299) is None
        assert detector.state == IDLE

    def test_cooldown_expiry(self, detector):
        detector.visibility_hidden(0)
        detector.visibility_visible(2000)
        detector.tick(4999)
        assert detector.state == COOLDOWN
        detector.tick(5000)
        assert detector.state == IDLE

    def test_signals_during_cooldown_suppressed(self, detector):
        detector.visibility_hidden(0)
        assert detector.visibility_visible(2000) == 2000
        detector.visibility_hidden(2500)
        assert detector.state == COOLDOWN
        assert detector.visibility_visible(4500) is None

    def test_rapid_flicker_reports_once(self, detector):
        reports = []
        for start in range(0, 2500, 500):
            detector.visibility_hidden(start)
            reports.append(detector.visibility_visible(start + 400))
        assert [r for r in reports if r is not None] == [400]

    def test_absence_after_cooldown_counts(self, detector):
        detector.visibility_hidden(0)
        detector.visibility_visible(2000)
        detector.visibility_hidden(5000)
        assert detector.state == HIDDEN
        assert detector.visibility_visible(7000) == 2000

    def test_visible_without_hidden_is_noop(self, detector):
        assert detector.visibility_visible(100) is None
        assert detector.state == IDLE

    def test_submitted_page_stops_detecting(self, detector):
        detector.mark_submitted()
        detector.visibility_hidden(0)
        assert detector.visibility_visible(10000) is None
        assert detector.should_heartbeat is False

    def test_no_heartbeat_while_hidden(self, detector):
        assert detector.should_heartbeat is True
        detector.visibility_hidden(0)
        assert detector.should_heartbeat is False


class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy(attempts=4, base_delay_ms=100, multiplier=2.0)
        assert [policy.delay_s(n) for n in (1, 2, 3)] == [0.1, 0.2, 0.4]

    def test_from_config(self):
        policy = RetryPolicy.from_config()
        assert policy.attempts == 3
        assert policy.base_delay_ms == 250


def _client(handler, attempts=3):
    return EscapeClient("T1", base_url="http://escape.test", token="tok",
                        policy=RetryPolicy(attempts=attempts, base_delay_ms=0),
                        transport=httpx.MockTransport(handler))


def _run(coro):
    return asyncio.run(coro)


class TestEscapeClient:

    def test_penalty_result(self):
        def handler(request):
            assert request.headers["x-exam"] == "tok"
            assert json.loads(request.content) == {"team_id": "T1", "hiddenMs": 4000}
            return httpx.Response(200, json={"action": "penalty", "scoreDeducted": 10, "currentScore": 20,
                                             "tabSwitchCount": 2, "message": "TAB/APP SWITCH DETECTED"})

        async def go():
            async with _client(handler) as c:
                return await c.report_tab_switch(4000)
        assert _run(go()) == Penalty(10, 20, 2, "TAB/APP SWITCH DETECTED")

    def test_ignored_result(self):
        def handler(request):
            return httpx.Response(200, json={"action": "ignored", "reason": "brief_hidden_state"})

        async def go():
            async with _client(handler) as c:
                return await c.report_tab_switch(100)
        assert _run(go()) == Ignored("brief_hidden_state")

    def test_server_errors_retried_then_failed(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        async def go():
            async with _client(handler, attempts=3) as c:
                return await c.report_tab_switch(4000)
        assert _run(go()) == Failed("HTTP 503", 3)
        assert len(calls) == 3

    def test_transport_error_recovers(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"action": "ignored", "reason": "rapid_consecutive_detection"})

        async def go():
            async with _client(handler) as c:
                return await c.report_tab_switch(4000)
        assert _run(go()) == Ignored("rapid_consecutive_detection")
        assert len(calls) == 2

    def test_client_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"ok": False, "error": "Team not found"})

        async def go():
            async with _client(handler) as c:
                return await c.report_tab_switch(4000)
        assert _run(go()) == Failed("HTTP 404", 1)
        assert len(calls) == 1

    def test_on_visible_reports_only_real_absences(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"action": "ignored", "reason": "rapid_consecutive_detection"})

        async def go():
            detector = SessionDetector(min_hidden_ms=300, cooldown_ms=3000)
            async with _client(handler) as c:
                detector.visibility_hidden(0)
                first = await c.on_visible(detector, 100)
                detector.visibility_hidden(200)
                second = await c.on_visible(detector, 2200)
            return first, second
        first, second = _run(go())
        assert first is None
        assert isinstance(second, Ignored)
        assert paths == ["/api/escape/tab-switch"]

    def test_heartbeat_failure_is_false(self):
        def handler(request):
            return httpx.Response(500)

        async def go():
            async with _client(handler, attempts=1) as c:
                return await c.heartbeat()
        assert _run(go()) is False


class TestHeartbeatLoop:

    def test_sends_until_stopped(self):
        async def go():
            stop = asyncio.Event()
            beats = []

            def handler(request):
                beats.append(request.url.path)
                if len(beats) == 3:
                    stop.set()
                return httpx.Response(200, json={"ok": True})

            async with _client(handler) as c:
                return await run_heartbeats(c, SessionDetector(), stop, interval_ms=1), beats
        sent, beats = _run(go())
        assert sent == 3
        assert set(beats) == {"/api/escape/heartbeat"}

    def test_silent_while_hidden(self):
        async def go():
            stop = asyncio.Event()
            detector = SessionDetector()
            detector.visibility_hidden(0)
            calls = []

            def handler(request):
                calls.append(request)
                return httpx.Response(200, json={"ok": True})

            async def stopper():
                await asyncio.sleep(0.02)
                stop.set()

            async with _client(handler) as c:
                sent, _ = await asyncio.gather(run_heartbeats(c, detector, stop, interval_ms=1), stopper())
            return sent, calls
        sent, calls = _run(go())
        assert sent == 0
        assert calls == []
