import pytest

from src.crawl.controller import CrawlController, is_domain_allowed, resolve_allowlist
from src.crawl.decision import DecisionOracle
from src.crawl.models import BrowsingAction, BrowsingDecision, CrawlLimits, Snapshot, SnapshotLink
from src.errors import NavigationError
from src.ingestion.models import ContentSignals, derive_story_id

SEED = "https://example.com/blog"
POST_1 = "https://example.com/blog/post-1"
POST_2 = "https://example.com/blog/post-2"


def page(url: str, *hrefs: str, title: str = "") -> Snapshot:
    return Snapshot(
        url=url,
        title=title or url.rsplit("/", 1)[-1],
        links=[SnapshotLink(id=f"link-{i}", text=href, href=href) for i, href in enumerate(hrefs)],
    )


def click(target: str) -> BrowsingDecision:
    return BrowsingDecision(action=BrowsingAction.CLICK, target=target, reason="follow")


EXTRACT = BrowsingDecision(action=BrowsingAction.EXTRACT, reason="article")


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


class FakeBrowser:
    def __init__(self, pages: dict, clock: FakeClock | None = None, step: float = 0.0, failing=()):
        self.pages = pages
        self.clock = clock
        self.step = step
        self.failing = set(failing)
        self.fetched: list[str] = []
        self.timeouts: list[int] = []
        self.closed = False
        self._current: Snapshot | None = None

    def fetch(self, url: str, timeout_ms: int) -> Snapshot:
        self.fetched.append(url)
        self.timeouts.append(timeout_ms)
        if self.clock:
            self.clock.t += self.step
        if url in self.failing:
            raise NavigationError(f"timeout loading {url}")
        self._current = self.pages.get(url) or page(url)
        return self._current

    def extract_content(self) -> ContentSignals:
        return ContentSignals(page_title=self._current.title, body_text="body")

    def close(self) -> None:
        self.closed = True


class ScriptedOracle:
    def __init__(self, decisions: dict):
        self.decisions = decisions
        self.seen: list[str] = []

    def decide(self, snapshot: Snapshot, timeout_ms: int | None = None) -> BrowsingDecision:
        self.seen.append(snapshot.url)
        return self.decisions.get(snapshot.url, BrowsingDecision.stop("done"))


def run(pages, decisions, limits=None, allowlist=("example.com",), **browser_kwargs):
    browser = FakeBrowser(pages, **browser_kwargs)
    controller = CrawlController(
        oracle=ScriptedOracle(decisions),
        browser_factory=lambda: browser,
        monotonic=browser_kwargs.get("clock") or FakeClock(),
    )
    candidates = controller.explore(SEED, list(allowlist), limits or CrawlLimits())
    return candidates, browser


def test_click_then_extract_yields_one_deterministic_candidate():
    pages = {SEED: page(SEED, POST_1), POST_1: page(POST_1, title="Post One")}
    decisions = {SEED: click("link-0"), POST_1: EXTRACT}
    limits = CrawlLimits(max_pages=3, max_clicks=2, max_depth=2, max_candidates=1)

    first, browser = run(pages, decisions, limits)
    second, _ = run(pages, decisions, limits)

    assert len(first) == 1
    assert first[0].id == derive_story_id(POST_1)
    assert first[0].id == second[0].id
    assert first[0].title == "Post One"
    assert first[0].content.body_text == "body"
    assert browser.fetched == [SEED, POST_1]
    assert browser.closed


def test_never_revisits_a_url():
    pages = {SEED: page(SEED, POST_1), POST_1: page(POST_1, SEED)}
    decisions = {SEED: click("link-0"), POST_1: click("link-0")}

    candidates, browser = run(pages, decisions)

    assert candidates == []
    assert browser.fetched == [SEED, POST_1]


def test_click_outside_allowlist_is_rejected():
    pages = {SEED: page(SEED, "https://evil.example.net/phish")}
    candidates, browser = run(pages, {SEED: click("link-0")})

    assert candidates == []
    assert browser.fetched == [SEED]


def test_unknown_click_target_is_rejected():
    pages = {SEED: page(SEED, POST_1)}
    candidates, browser = run(pages, {SEED: click("link-9")})

    assert browser.fetched == [SEED]
    assert candidates == []


def test_seed_outside_allowlist_fetches_nothing():
    candidates, browser = run({}, {}, allowlist=("other.org",))

    assert candidates == []
    assert browser.fetched == []
    assert browser.closed


def test_subdomains_are_allowed():
    assert is_domain_allowed("https://blog.example.com/x", ["example.com"])
    assert not is_domain_allowed("https://badexample.com/x", ["example.com"])
    assert not is_domain_allowed("not a url", ["example.com"])


def test_allowlist_defaults_to_seed_host():
    assert resolve_allowlist(SEED, None) == ["example.com"]
    assert resolve_allowlist(SEED, [" Example.com ", ""]) == ["example.com"]


def test_depth_budget():
    pages = {SEED: page(SEED, POST_1), POST_1: page(POST_1, POST_2)}
    decisions = {SEED: click("link-0"), POST_1: click("link-0"), POST_2: EXTRACT}

    candidates, browser = run(pages, decisions, CrawlLimits(max_depth=1, max_pages=10, max_clicks=10))

    assert browser.fetched == [SEED, POST_1]
    assert candidates == []


def test_page_budget():
    pages = {SEED: page(SEED, POST_1)}
    candidates, browser = run(pages, {SEED: click("link-0")}, CrawlLimits(max_pages=1))

    assert browser.fetched == [SEED]
    assert candidates == []


def test_click_budget():
    pages = {SEED: page(SEED, POST_1), POST_1: page(POST_1, POST_2)}
    decisions = {SEED: click("link-0"), POST_1: click("link-0")}

    _, browser = run(pages, decisions, CrawlLimits(max_clicks=1, max_pages=10, max_depth=5))

    assert browser.fetched == [SEED, POST_1]


def test_wall_clock_budget_stops_the_run():
    clock = FakeClock()
    pages = {SEED: page(SEED, POST_1), POST_1: page(POST_1, POST_2)}
    decisions = {SEED: click("link-0"), POST_1: click("link-0"), POST_2: EXTRACT}
    limits = CrawlLimits(timeout_ms=1000, nav_timeout_ms=20000, max_pages=10, max_clicks=10, max_depth=10)

    candidates, browser = run(pages, decisions, limits, clock=clock, step=0.5)

    assert browser.fetched == [SEED, POST_1]
    assert candidates == []
    assert browser.closed
    # navigation timeouts are capped by what is left of the run
    assert browser.timeouts == [1000, 500]


def test_navigation_failure_skips_the_page():
    pages = {SEED: page(SEED, POST_1, POST_2)}
    decisions = {SEED: click("link-0")}

    candidates, browser = run(pages, decisions, failing=[POST_1])

    assert browser.fetched == [SEED, POST_1]
    assert candidates == []
    assert browser.closed


def test_malformed_oracle_reply_stops_without_candidates():
    class GarbageLLM:
        def call(self, prompt, system=None, timeout=None, json_mode=False):
            return "sure! click the first link"

    browser = FakeBrowser({SEED: page(SEED, POST_1)})
    controller = CrawlController(
        oracle=DecisionOracle(GarbageLLM()),
        browser_factory=lambda: browser,
        monotonic=FakeClock(),
    )

    assert controller.explore(SEED, ["example.com"]) == []
    assert browser.fetched == [SEED]
    assert browser.closed


def test_unexpected_browser_error_still_releases_browser():
    class ExplodingBrowser(FakeBrowser):
        def fetch(self, url, timeout_ms):
            raise RuntimeError("browser crashed")

    browser = ExplodingBrowser({})
    controller = CrawlController(
        oracle=ScriptedOracle({}), browser_factory=lambda: browser, monotonic=FakeClock()
    )

    assert controller.explore(SEED, ["example.com"]) == []
    assert browser.closed


def test_browser_launch_failure_returns_empty():
    def factory():
        raise RuntimeError("chromium missing")

    controller = CrawlController(oracle=ScriptedOracle({}), browser_factory=factory, monotonic=FakeClock())

    assert controller.explore(SEED, ["example.com"]) == []


@pytest.mark.parametrize("limit", [1, 2])
def test_candidate_budget(limit):
    pages = {SEED: page(SEED, POST_1, POST_2)}
    decisions = {SEED: EXTRACT}

    candidates, _ = run(pages, decisions, CrawlLimits(max_candidates=limit))

    assert len(candidates) == 1
