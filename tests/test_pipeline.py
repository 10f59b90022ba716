import json
import logging
import threading
from pathlib import Path
from typing import Any

import pytest

from directory_harvester import pipeline
from directory_harvester.checkpoint import CheckpointStore
from directory_harvester.config import RunConfig
from directory_harvester.errors import DriverFatalError, TransientNavigationError
from directory_harvester.models import MemberRecord, SearchResult, SearchUnit
from directory_harvester.pipeline import (
    FORCE_ENABLE_SCRIPT,
    exhaust_pagination,
    process_unit,
    retry_policy_from_config,
    scrape_units,
    search_single_postcode,
)
from directory_harvester.selectors import SelectorSpec

LOAD_MORE_CSS = "button.btn-result, .btn-result"


class FakeHandle:
    def __init__(self, name: str, *, visible: bool = True, enabled: bool = True) -> None:
        self.name = name
        self.visible = visible
        self.enabled = enabled


class FakeSession:
    """Scripted stand-in for the browser session."""

    def __init__(
        self,
        *,
        navigate_errors: int = 0,
        fatal_on_navigation: int | None = None,
        fail_fill_for: tuple[str, ...] = (),
        load_more_pages: int | None = 0,
        submit_enabled: bool = True,
        missing: tuple[str, ...] = (),
        on_fill: Any = None,
    ) -> None:
        self.navigate_errors = navigate_errors
        self.fatal_on_navigation = fatal_on_navigation
        self.fail_fill_for = fail_fill_for
        self.load_more_pages = load_more_pages
        self.submit_enabled = submit_enabled
        self.missing = missing
        self.on_fill = on_fill
        self.navigations = 0
        self.load_more_clicks = 0
        self.postcode = ""
        self.filled: list[str] = []
        self.waits: list[int] = []
        self.scripts: list[str] = []
        self.screenshots: list[str] = []
        self.handles: dict[str, FakeHandle] = {}
        self._reset_page()

    def _reset_page(self) -> None:
        self.handles = {
            ".tab-title": FakeHandle("tab"),
            'input[name="postcode"]': FakeHandle("postcode"),
            'button[type="submit"].cta': FakeHandle("submit", enabled=self.submit_enabled),
            LOAD_MORE_CSS: FakeHandle("load-more", visible=self.load_more_pages != 0),
        }
        for css in self.missing:
            self.handles.pop(css, None)
        self.load_more_clicks = 0

    def navigate(self, url: str, wait_condition: str, timeout_ms: int) -> None:
        self.navigations += 1
        if self.fatal_on_navigation is not None and self.navigations >= self.fatal_on_navigation:
            raise DriverFatalError("browser closed")
        if self.navigate_errors:
            self.navigate_errors -= 1
            raise TransientNavigationError("timeout")
        self._reset_page()

    def locate(self, spec: SelectorSpec, *, timeout_ms: int = 0, visible: bool = False) -> Any:
        handle = self.handles.get(spec.css)
        if handle is None or (visible and not handle.visible):
            return None
        return handle

    def fill(self, handle: FakeHandle, text: str) -> None:
        self.postcode = text
        self.filled.append(text)
        if self.on_fill is not None:
            self.on_fill(text)
        if text in self.fail_fill_for:
            raise RuntimeError("postcode input detached")

    def click(self, handle: FakeHandle) -> None:
        if handle.name == "load-more":
            self.load_more_clicks += 1
            if self.load_more_pages is not None and self.load_more_clicks >= self.load_more_pages:
                handle.visible = False

    def is_visible(self, handle: FakeHandle) -> bool:
        return handle.visible

    def is_enabled(self, handle: FakeHandle) -> bool:
        return handle.enabled

    def evaluate_in_page(self, script: str, *args: Any) -> Any:
        self.scripts.append(script)
        submit = self.handles.get('button[type="submit"].cta')
        if script == FORCE_ENABLE_SCRIPT and submit is not None:
            submit.enabled = True
        return 0

    def wait_ms(self, duration: int) -> None:
        self.waits.append(duration)

    def screenshot(self, path: str) -> None:
        self.screenshots.append(path)

    def title(self) -> str:
        return "Find a Chartered Accountant | CA ANZ"

    def current_url(self) -> str:
        return "https://example.com/find-a-ca#results"

    def content(self) -> str:
        return (
            '<div class="member-card">'
            f"<h3>Member Number {self.postcode}</h3>"
            f"<p>m{self.postcode}@example.com</p>"
            "</div>"
        )

    def visible_text(self) -> str:
        return ""

    def close(self) -> None:
        return None


def make_config(tmp_path: Path, **overrides: Any) -> RunConfig:
    values: dict[str, Any] = {
        "output": str(tmp_path / "members.json"),
        "batch_size": 10,
        "delay_between_units_ms": 100,
        "navigation_retry_delay_ms": 10,
        "page_settle_ms": 0,
        "search_settle_ms": 0,
        "load_more_settle_ms": 0,
        "show_progress": False,
    }
    values.update(overrides)
    return RunConfig(**values)


def make_units(*codes: str) -> list[SearchUnit]:
    return [SearchUnit(postcode=code, region="NSW") for code in codes]


def run_one(session: FakeSession, config: RunConfig, postcode: str = "3000") -> SearchResult:
    return process_unit(
        SearchUnit(postcode=postcode, region="VIC"),
        session=session,  # type: ignore[arg-type]
        config=config,
        retry_policy=retry_policy_from_config(config),
        logger=logging.getLogger("test"),
    )


def test_process_unit_success_paginates_and_extracts(tmp_path: Path) -> None:
    session = FakeSession(load_more_pages=3)
    result = run_one(session, make_config(tmp_path))

    assert result.succeeded
    assert [record.email for record in result.records] == ["m3000@example.com"]
    assert result.records[0].first_name == "Member"
    assert session.filled == ["3000"]
    assert session.load_more_clicks == 3
    assert session.navigations == 1


def test_navigation_is_retried_until_success(tmp_path: Path) -> None:
    session = FakeSession(navigate_errors=2)
    result = run_one(session, make_config(tmp_path, navigation_retry_delay_ms=10))

    assert result.succeeded
    assert session.navigations == 3
    assert session.waits.count(10) == 2


def test_navigation_exhaustion_is_a_unit_failure(tmp_path: Path) -> None:
    session = FakeSession(navigate_errors=3)
    result = run_one(session, make_config(tmp_path))

    assert not result.succeeded
    assert result.records == ()
    assert result.error is not None
    assert "Navigation failed after 3 attempts" in result.error
    assert session.filled == []


def test_missing_location_tab_fails_unit_with_screenshot(tmp_path: Path) -> None:
    session = FakeSession(missing=(".tab-title",))
    config = make_config(tmp_path, screenshot_dir=str(tmp_path / "shots"))
    result = run_one(session, config)

    assert result.status == "failed"
    assert result.error == "Location search tab not found"
    assert session.screenshots == [str(tmp_path / "shots" / "error-form-fill-3000.png")]


def test_missing_search_button_fails_unit(tmp_path: Path) -> None:
    session = FakeSession(missing=('button[type="submit"].cta',))
    result = run_one(session, make_config(tmp_path))

    assert not result.succeeded
    assert result.error is not None
    assert "Search submit button not found" in result.error


def test_disabled_submit_is_forced_enabled(tmp_path: Path) -> None:
    session = FakeSession(submit_enabled=False)
    result = run_one(session, make_config(tmp_path))

    assert result.succeeded
    assert FORCE_ENABLE_SCRIPT in session.scripts


def test_pagination_stops_at_click_cap(tmp_path: Path) -> None:
    session = FakeSession(load_more_pages=None)
    session.handles[LOAD_MORE_CSS].visible = True
    config = make_config(tmp_path, max_load_more_clicks=5)

    clicks = exhaust_pagination(
        session=session,  # type: ignore[arg-type]
        config=config,
        logger=logging.getLogger("test"),
    )
    assert clicks == 5
    assert session.load_more_clicks == 5


def test_pagination_without_button_clicks_nothing(tmp_path: Path) -> None:
    session = FakeSession(load_more_pages=0)
    clicks = exhaust_pagination(
        session=session,  # type: ignore[arg-type]
        config=make_config(tmp_path),
        logger=logging.getLogger("test"),
    )
    assert clicks == 0


def test_driver_fatal_error_propagates_from_process_unit(tmp_path: Path) -> None:
    session = FakeSession(fatal_on_navigation=1)
    with pytest.raises(DriverFatalError):
        run_one(session, make_config(tmp_path))


def test_scrape_units_records_failures_and_writes_aggregate(tmp_path: Path) -> None:
    config = make_config(tmp_path, batch_size=1)
    store = CheckpointStore(config.output, logger=logging.getLogger("test"))
    session = FakeSession(fail_fill_for=("2000",))

    aggregate = scrape_units(
        make_units("0800", "2000", "3000"),
        session=session,  # type: ignore[arg-type]
        config=config,
        store=store,
        logger=logging.getLogger("test"),
    )

    summary = aggregate["summary"]
    assert summary["total_postcodes_processed"] == 3
    assert summary["successful_postcodes"] == 2
    assert summary["failed_postcodes"] == 1
    assert [item["postcode"] for item in aggregate["postcode_summary"]] == ["0800", "2000", "3000"]
    assert aggregate["postcode_summary"][1]["status"] == "failed"
    assert "detached" in aggregate["postcode_summary"][1]["error"]
    successful_counts = sum(
        item["memberCount"] for item in aggregate["postcode_summary"] if item["status"] == "success"
    )
    assert successful_counts == len(aggregate["all_members"]) == summary["total_members_found"]
    assert session.waits.count(100) == 2

    written = json.loads(Path(config.output).read_text(encoding="utf-8"))
    assert written["summary"]["status"] == "completed"
    progress = json.loads(store.progress_path.read_text(encoding="utf-8"))
    assert progress["status"] == "in_progress"
    assert progress["processed"] == 3
    assert progress["progress_percent"] == "100.0"


def test_driver_fatal_error_writes_partial_and_reraises(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    store = CheckpointStore(config.output, logger=logging.getLogger("test"))
    session = FakeSession(fatal_on_navigation=3)

    with pytest.raises(DriverFatalError):
        scrape_units(
            make_units("0800", "2000", "3000"),
            session=session,  # type: ignore[arg-type]
            config=config,
            store=store,
            logger=logging.getLogger("test"),
        )

    assert not Path(config.output).exists()
    partial = json.loads(store.partial_path.read_text(encoding="utf-8"))
    assert partial["summary"]["status"] == "failed"
    assert [item["postcode"] for item in partial["postcode_summary"]] == ["0800", "2000"]


def test_resume_reuses_checkpoint_without_duplicates(tmp_path: Path) -> None:
    codes = [str(code) for code in range(2000, 2025)]
    units = make_units(*codes)
    logger = logging.getLogger("test")

    prior_config = make_config(tmp_path)
    prior_store = CheckpointStore(prior_config.output, logger=logger)
    prior = [
        SearchResult(unit=unit, records=(MemberRecord(email=f"p{unit.postcode}@example.com"),))
        for unit in units[:20]
    ]
    prior_store.write_progress(prior, 20, len(units))

    config = make_config(tmp_path, resume_from=units[20].postcode)
    session = FakeSession()
    aggregate = scrape_units(
        units,
        session=session,  # type: ignore[arg-type]
        config=config,
        store=CheckpointStore(config.output, logger=logger),
        logger=logger,
    )

    postcodes = [item["postcode"] for item in aggregate["postcode_summary"]]
    assert postcodes == codes
    assert aggregate["summary"]["total_postcodes_processed"] == len(units)
    assert session.filled == codes[20:]
    assert aggregate["summary"]["total_members_found"] == len(units)


def test_resume_past_checkpoint_coverage_rewinds_to_first_gap(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    codes = [str(code) for code in range(2000, 2030)]
    units = make_units(*codes)
    logger = logging.getLogger("test")

    prior_store = CheckpointStore(make_config(tmp_path).output, logger=logger)
    prior = [SearchResult(unit=unit) for unit in units[:20]]
    prior_store.write_progress(prior, 20, len(units))

    config = make_config(tmp_path, resume_from=units[24].postcode)
    session = FakeSession()
    with caplog.at_level(logging.WARNING, logger="test"):
        aggregate = scrape_units(
            units,
            session=session,  # type: ignore[arg-type]
            config=config,
            store=CheckpointStore(config.output, logger=logger),
            logger=logger,
        )

    assert session.filled == codes[20:]
    assert [item["postcode"] for item in aggregate["postcode_summary"]] == codes
    assert aggregate["summary"]["total_postcodes_processed"] == len(units)
    assert "resuming from 2020 instead" in caplog.text


def test_resume_without_checkpoint_warns(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    units = make_units("2000", "2001", "2002")
    config = make_config(tmp_path, resume_from="2002")
    session = FakeSession()
    with caplog.at_level(logging.WARNING, logger="test"):
        scrape_units(
            units,
            session=session,  # type: ignore[arg-type]
            config=config,
            store=CheckpointStore(config.output, logger=logging.getLogger("test")),
            logger=logging.getLogger("test"),
        )

    assert session.filled == ["2002"]
    assert "No checkpoint" in caplog.text


class RecordingBar:
    instances: list["RecordingBar"] = []

    def __init__(self, iterable: Any, **_kwargs: Any) -> None:
        self.iterable = iterable
        self.closed = False
        RecordingBar.instances.append(self)

    def __iter__(self) -> Any:
        return iter(self.iterable)

    def close(self) -> None:
        self.closed = True


@pytest.mark.parametrize("outcome", ["stopped", "driver lost"])
def test_progress_bar_is_closed_on_early_exit(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, outcome: str
) -> None:
    RecordingBar.instances.clear()
    monkeypatch.setattr(pipeline, "tqdm", RecordingBar)
    config = make_config(tmp_path, show_progress=True)
    stop_event = threading.Event()
    if outcome == "stopped":
        stop_event.set()
        session = FakeSession()
    else:
        session = FakeSession(fatal_on_navigation=1)

    def run() -> None:
        scrape_units(
            make_units("2000", "2001"),
            session=session,  # type: ignore[arg-type]
            config=config,
            store=CheckpointStore(config.output, logger=logging.getLogger("test")),
            logger=logging.getLogger("test"),
            stop_event=stop_event,
        )

    if outcome == "stopped":
        run()
    else:
        with pytest.raises(DriverFatalError):
            run()

    [bar] = RecordingBar.instances
    assert bar.closed is True


def test_stop_event_halts_at_unit_boundary(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    store = CheckpointStore(config.output, logger=logging.getLogger("test"))
    stop_event = threading.Event()
    session = FakeSession(on_fill=lambda _postcode: stop_event.set())

    aggregate = scrape_units(
        make_units("0800", "2000", "3000"),
        session=session,  # type: ignore[arg-type]
        config=config,
        store=store,
        logger=logging.getLogger("test"),
        stop_event=stop_event,
    )

    assert session.filled == ["0800"]
    assert aggregate["summary"]["status"] == "in_progress"
    assert aggregate["summary"]["total_postcodes_processed"] == 1
    assert not Path(config.output).exists()
    progress = json.loads(store.progress_path.read_text(encoding="utf-8"))
    assert progress["processed"] == 1


def test_stop_event_set_before_start_processes_nothing(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    stop_event = threading.Event()
    stop_event.set()
    session = FakeSession()

    aggregate = scrape_units(
        make_units("0800", "2000"),
        session=session,  # type: ignore[arg-type]
        config=config,
        store=CheckpointStore(config.output, logger=logging.getLogger("test")),
        logger=logging.getLogger("test"),
        stop_event=stop_event,
    )
    assert session.navigations == 0
    assert aggregate["postcode_summary"] == []


def test_unwritable_checkpoint_does_not_stop_run(tmp_path: Path) -> None:
    blocked = tmp_path / "blocked"
    blocked.mkdir()
    config = make_config(tmp_path, batch_size=1, checkpoint_path=str(blocked))
    store = CheckpointStore(
        config.output, logger=logging.getLogger("test"), checkpoint_path=config.checkpoint_path
    )

    aggregate = scrape_units(
        make_units("0800", "2000"),
        session=FakeSession(),  # type: ignore[arg-type]
        config=config,
        store=store,
        logger=logging.getLogger("test"),
    )
    assert aggregate["summary"]["successful_postcodes"] == 2
    assert Path(config.output).exists()


def test_search_single_postcode_writes_single_output(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    store = CheckpointStore(config.output, logger=logging.getLogger("test"))

    result = search_single_postcode(
        "800",
        session=FakeSession(),  # type: ignore[arg-type]
        config=config,
        store=store,
        logger=logging.getLogger("test"),
        region="NT",
    )

    assert result.unit == SearchUnit(postcode="0800", region="NT")
    written = json.loads(Path(config.output).read_text(encoding="utf-8"))
    assert written["totalCount"] == 1
    assert written["searchDetails"][0]["Email"] == "m0800@example.com"
