"""Tests for the presence predicate and the inspector's failure handling."""

import asyncio

import pytest

from live_check.events import EventBus, EventKind
from live_check.inspector import Inspector, evaluate_presence
from live_check.models import Outcome, Target
from live_check.orchestrator import Orchestrator

LIVE_HTML = """
<html><body>
  <div class="review">
    <span>Great service</span>
    <button class="gllhef" data-review-id="ChdDSUhNMG9n">Share</button>
  </div>
</body></html>
"""

MISSING_HTML = """
<html><body>
  <div class="place"><h1>Joe's Garage</h1><button class="other">Directions</button></div>
</body></html>
"""

NOT_FOUND_HTML = """
<html><body><div>Google Maps can&#39;t find this link</div></body></html>
"""


def _returning(html):
    async def render(url):
        return html

    return render


def _target(url: str = "https://maps.app.goo.gl/abc") -> Target:
    return Target(resource_id="r1", url=url, hint="Great service")


@pytest.fixture
def inspector():
    return Inspector(navigation_timeout=1, settle_delay=0, marker_wait=0, hard_timeout=2)


def test_evaluate_presence_confirmed_with_evidence():
    outcome, evidence = evaluate_presence(LIVE_HTML)
    assert outcome is Outcome.confirmed
    assert evidence == "ChdDSUhNMG9n"


def test_evaluate_presence_absent_without_marker():
    assert evaluate_presence(MISSING_HTML) == (Outcome.absent, None)


def test_evaluate_presence_not_found_text_wins():
    assert evaluate_presence(NOT_FOUND_HTML)[0] is Outcome.absent


def test_evaluate_presence_empty_html():
    assert evaluate_presence("") == (Outcome.absent, None)


def test_marker_needs_class_and_attribute():
    html = '<html><body><button class="gllhef">Share</button></body></html>'
    assert evaluate_presence(html)[0] is Outcome.absent


def test_inspect_confirmed(inspector, monkeypatch):
    monkeypatch.setattr(inspector, "_render", _returning(LIVE_HTML))
    verdict = asyncio.run(inspector.inspect(_target()))
    assert verdict.resource_id == "r1"
    assert verdict.outcome is Outcome.confirmed
    assert verdict.evidence == "ChdDSUhNMG9n"
    assert verdict.error is None


def test_inspect_absent(inspector, monkeypatch):
    monkeypatch.setattr(inspector, "_render", _returning(MISSING_HTML))
    verdict = asyncio.run(inspector.inspect(_target()))
    assert verdict.outcome is Outcome.absent


def test_inspect_passes_stripped_url(inspector, monkeypatch):
    seen = []

    async def fake_render(url):
        seen.append(url)
        return MISSING_HTML

    monkeypatch.setattr(inspector, "_render", fake_render)
    asyncio.run(inspector.inspect(_target("  https://maps.app.goo.gl/abc  ")))
    assert seen == ["https://maps.app.goo.gl/abc"]


def test_inspect_without_url_fails_fast(inspector, monkeypatch):
    async def fail_render(url):
        raise AssertionError("should not render")

    monkeypatch.setattr(inspector, "_render", fail_render)
    verdict = asyncio.run(inspector.inspect(_target("   ")))
    assert verdict.outcome is Outcome.failed
    assert verdict.error == "No link provided"


def test_inspect_render_error_becomes_failed(inspector, monkeypatch):
    async def broken_render(url):
        raise RuntimeError("net::ERR_NAME_NOT_RESOLVED")

    monkeypatch.setattr(inspector, "_render", broken_render)
    verdict = asyncio.run(inspector.inspect(_target()))
    assert verdict.outcome is Outcome.failed
    assert "ERR_NAME_NOT_RESOLVED" in verdict.error


def test_inspect_hard_timeout(monkeypatch):
    inspector = Inspector(navigation_timeout=1, settle_delay=0, marker_wait=0, hard_timeout=0.05)

    async def slow_render(url):
        await asyncio.sleep(0.3)
        return LIVE_HTML

    monkeypatch.setattr(inspector, "_render", slow_render)
    verdict = asyncio.run(inspector.inspect(_target()))
    assert verdict.outcome is Outcome.failed
    assert verdict.error.startswith("Timed out")


def test_default_hard_timeout_covers_all_phases():
    inspector = Inspector(navigation_timeout=30, settle_delay=3, marker_wait=5)
    assert inspector.hard_timeout > 38


def test_not_found_text_outside_body_is_ignored():
    html = """
    <html><head><title>Review not found</title>
    <script>var msg = "Place not found";</script></head>
    <body><button class="gllhef" data-review-id="Chd1">Share</button></body></html>
    """
    assert evaluate_presence(html) == (Outcome.confirmed, "Chd1")


def test_doesnt_exist_text_is_absent():
    html = '<html><body><p>This place doesn\'t exist.</p><button class="gllhef" data-review-id="x"></button></body></html>'
    assert evaluate_presence(html)[0] is Outcome.absent


class _RenderTracker:
    """Async render stand-in that counts how many renders are alive at once."""

    def __init__(self, delay: float, html: str = LIVE_HTML):
        self.delay = delay
        self.html = html
        self.alive = 0
        self.peak = 0
        self.started = 0

    async def __call__(self, url):
        self.alive += 1
        self.started += 1
        self.peak = max(self.peak, self.alive)
        try:
            await asyncio.sleep(self.delay)
            return self.html
        finally:
            self.alive -= 1


def test_timed_out_render_is_torn_down_before_returning():
    inspector = Inspector(navigation_timeout=1, settle_delay=0, marker_wait=0, hard_timeout=0.05)
    tracker = _RenderTracker(delay=0.3)
    inspector._render = tracker

    verdict = asyncio.run(inspector.inspect(_target()))
    assert verdict.outcome is Outcome.failed
    assert tracker.alive == 0


class _Loader:
    def load_targets(self, resource_ids):
        return [Target(resource_id=rid, url=f"https://maps.example/{rid}") for rid in resource_ids]


class _Sink:
    def persist_verdict(self, verdict):
        pass


def test_retries_after_timeout_never_overlap():
    inspector = Inspector(navigation_timeout=1, settle_delay=0, marker_wait=0, hard_timeout=0.05)
    tracker = _RenderTracker(delay=0.3)
    inspector._render = tracker

    async def scenario():
        bus = EventBus()
        alive_at_completion = []
        bus.subscribe(lambda e: alive_at_completion.append(tracker.alive) if e.kind is EventKind.completed else None)
        orch = Orchestrator(_Loader(), _Sink(), inspector, bus=bus, concurrency=1)
        orch.start(["r1"], "alice")
        await orch.wait_idle()
        return orch.stats_snapshot(), alive_at_completion

    stats, alive_at_completion = asyncio.run(scenario())
    assert tracker.started == 3
    assert tracker.peak <= 1
    assert tracker.alive == 0
    assert alive_at_completion == [0]
    assert stats["failed"] == 1


def test_renders_run_in_parallel_up_to_max_concurrency():
    inspector = Inspector(navigation_timeout=1, settle_delay=0, marker_wait=0, hard_timeout=2)
    tracker = _RenderTracker(delay=0.05)
    inspector._render = tracker

    async def scenario():
        targets = [Target(resource_id=f"r{i}", url=f"https://maps.example/r{i}") for i in range(10)]
        return await asyncio.gather(*(inspector.inspect(t) for t in targets))

    verdicts = asyncio.run(scenario())
    assert all(v.outcome is Outcome.confirmed for v in verdicts)
    assert tracker.peak == 10
