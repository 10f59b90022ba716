"""Core orchestration pipeline.

Each postcode runs through the same workflow on one shared browser session:
navigate, fill the form, search, exhaust "Load More", extract, record. A
failure inside that workflow is recorded against the postcode and the run
moves on; only a lost browser session ends the run.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any

from tqdm import tqdm

from .browser import SeleniumSession
from .checkpoint import (
    CheckpointStore,
    build_final_aggregate,
    compute_resume_index,
    seed_results,
    utc_timestamp,
)
from .config import RunConfig
from .errors import (
    DriverFatalError,
    ElementNotFoundError,
    PersistenceError,
    TransientNavigationError,
)
from .extraction import extract_members
from .models import (
    RUN_FAILED,
    RUN_IN_PROGRESS,
    MemberRecord,
    SearchResult,
    SearchSession,
    SearchUnit,
)
from .retry import RetryPolicy
from .selectors import SelectorSpec, first_match
from .validation import normalize_postcode

TAB_SETTLE_MS = 1500
INPUT_WAIT_MS = 5000
INPUT_SETTLE_MS = 2000
SUBMIT_RECHECK_MS = 3000
SEARCH_BUTTON_WAIT_MS = 2000
FORCE_ENABLE_SETTLE_MS = 1000
FINAL_SETTLE_MS = 2000

EXPECTED_TITLE_HINTS = ("Find a Chartered Accountant", "CA ANZ")
LOCATION_TAB = SelectorSpec(".tab-title", text="City, Suburb, or Postcode", label="location tab")
POSTCODE_INPUT = SelectorSpec('input[name="postcode"]', label="postcode input")
SUBMIT_BUTTON = SelectorSpec('button[type="submit"].cta', text="Search", label="search submit")
SEARCH_BUTTON_SELECTORS = [
    SelectorSpec('button[type="submit"].cta', text="Search", has='img[alt*="arrow"]'),
    SelectorSpec("button.cta", text="Search", has='img[src*="arrow-right"]'),
    SelectorSpec('button[type="submit"].cta', has='img[alt="arrow right icon"]'),
    SelectorSpec('.form-group button[type="submit"].cta', text="Search"),
    SelectorSpec('div.col-12 button[type="submit"].cta'),
    SelectorSpec('button[type="submit"].cta:not([disabled])'),
]
LOAD_MORE_SELECTORS = [
    SelectorSpec("button.btn-result, .btn-result", label="load more"),
    SelectorSpec("button", text=re.compile(r"load more", re.IGNORECASE), label="load more (text)"),
]
RESULT_CONTAINER_CSS = ".member-card, .search-result, .member-listing, [data-member]"

# The submit button only enables after the form's client-side state sees the
# postcode. When that never happens the disabled flag is cleared directly,
# which can submit a form the page does not consider ready.
FORCE_ENABLE_SCRIPT = """
document.querySelectorAll('button[type="submit"].cta').forEach((btn) => {
    if (btn.textContent.includes('Search')) {
        btn.disabled = false;
        btn.style.backgroundColor = '';
        btn.style.cursor = '';
    }
});
"""
COUNT_SCRIPT = "return document.querySelectorAll(arguments[0]).length;"


class UnitStage(str, Enum):
    """Workflow stages for one postcode."""

    IDLE = "idle"
    NAVIGATING = "navigating"
    FORM_FILLING = "form filling"
    SEARCHING = "searching"
    PAGINATING = "paginating"
    EXTRACTING = "extracting"
    RECORDING = "recording"


def retry_policy_from_config(config: RunConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.navigation_attempts,
        delay_ms=config.navigation_retry_delay_ms,
    )


def capture_screenshot(
    session: SearchSession, config: RunConfig, name: str, *, logger: logging.Logger
) -> None:
    """Save a diagnostic screenshot when a screenshot directory is configured."""
    if not config.screenshot_dir:
        return
    path = Path(config.screenshot_dir) / f"{name}.png"
    try:
        session.screenshot(str(path))
        logger.info("Screenshot saved as %s", path)
    except DriverFatalError:
        raise
    except Exception as exc:
        logger.warning("Could not take screenshot %s: %s", path, exc)


def navigate_to_search_page(
    *,
    session: SearchSession,
    config: RunConfig,
    retry_policy: RetryPolicy,
    logger: logging.Logger,
) -> None:
    def attempt() -> None:
        session.navigate(config.search_url, "domcontentloaded", config.navigation_timeout_ms)

    try:
        retry_policy.call(
            attempt, sleep_ms=session.wait_ms, logger=logger, description="Navigation"
        )
    except TransientNavigationError as exc:
        raise TransientNavigationError(
            f"Navigation failed after {retry_policy.max_attempts} attempts: {exc}"
        ) from exc

    session.wait_ms(config.page_settle_ms)
    title = session.title()
    if any(hint in title for hint in EXPECTED_TITLE_HINTS):
        logger.debug("Search page loaded: %s", title)
    else:
        logger.warning("Unexpected page title %r, continuing", title)


def _submit_enabled(session: SearchSession) -> bool:
    button = session.locate(SUBMIT_BUTTON)
    return button is not None and session.is_enabled(button)


def force_enable_submit(session: SearchSession, *, logger: logging.Logger) -> None:
    logger.warning("Forcing the search button enabled via page script")
    session.evaluate_in_page(FORCE_ENABLE_SCRIPT)


def fill_search_form(
    postcode: str,
    *,
    session: SearchSession,
    config: RunConfig,
    logger: logging.Logger,
) -> None:
    """Open the location tab, enter the postcode and make sure search is clickable."""
    try:
        tab = session.locate(LOCATION_TAB)
        if tab is None or not session.is_visible(tab):
            raise ElementNotFoundError("Location search tab not found")
        session.click(tab)
        session.wait_ms(TAB_SETTLE_MS)

        field = session.locate(POSTCODE_INPUT, timeout_ms=INPUT_WAIT_MS, visible=True)
        if field is None:
            raise ElementNotFoundError("Postcode input not found")
        session.fill(field, postcode)
        session.wait_ms(INPUT_SETTLE_MS)

        if not _submit_enabled(session):
            logger.debug("Search button disabled after entering %s, waiting", postcode)
            session.wait_ms(SUBMIT_RECHECK_MS)
            if not _submit_enabled(session):
                force_enable_submit(session, logger=logger)
    except DriverFatalError:
        raise
    except Exception:
        capture_screenshot(session, config, f"error-form-fill-{postcode}", logger=logger)
        raise


def execute_search(
    *,
    session: SearchSession,
    config: RunConfig,
    logger: logging.Logger,
) -> None:
    hit = first_match(
        SEARCH_BUTTON_SELECTORS,
        lambda spec: session.locate(spec, timeout_ms=SEARCH_BUTTON_WAIT_MS, visible=True),
    )
    if hit is None:
        capture_screenshot(session, config, "search-button-not-found", logger=logger)
        raise ElementNotFoundError("Search submit button not found with any selector")
    logger.debug("Found search button with selector: %s", hit.spec.describe())

    button = hit.value
    if not session.is_enabled(button):
        capture_screenshot(session, config, "disabled-search-button", logger=logger)
        force_enable_submit(session, logger=logger)
        session.wait_ms(FORCE_ENABLE_SETTLE_MS)

    session.click(button)
    session.wait_ms(config.search_settle_ms)
    containers = session.evaluate_in_page(COUNT_SCRIPT, RESULT_CONTAINER_CSS)
    logger.debug("Search submitted; url=%s containers=%s", session.current_url(), containers)


def _usable_button(session: SearchSession, spec: SelectorSpec) -> Any:
    handle = session.locate(spec)
    if handle is not None and session.is_visible(handle) and session.is_enabled(handle):
        return handle
    return None


def exhaust_pagination(
    *,
    session: SearchSession,
    config: RunConfig,
    logger: logging.Logger,
) -> int:
    """Click "Load More" until it goes away, is disabled, or the click cap is hit."""
    clicks = 0
    while clicks < config.max_load_more_clicks:
        try:
            hit = first_match(LOAD_MORE_SELECTORS, lambda spec: _usable_button(session, spec))
            if hit is None:
                logger.debug("No Load More button found, all content loaded")
                break
            session.click(hit.value)
            clicks += 1
            session.wait_ms(config.load_more_settle_ms)
            if not (session.is_visible(hit.value) and session.is_enabled(hit.value)):
                logger.debug("Load More button disappeared or disabled, all content loaded")
                break
        except DriverFatalError:
            raise
        except Exception as exc:
            logger.warning("Error during Load More automation: %s", exc)
            break

    if clicks >= config.max_load_more_clicks:
        logger.warning("Stopped at the Load More click cap (%d)", config.max_load_more_clicks)
    logger.debug("Load More automation complete. Clicked %d times", clicks)
    session.wait_ms(FINAL_SETTLE_MS)
    return clicks


def extract_page(*, session: SearchSession, logger: logging.Logger) -> list[MemberRecord]:
    records = extract_members(session.content(), session.visible_text())
    logger.debug("Extracted %d members from page", len(records))
    return records


def process_unit(
    unit: SearchUnit,
    *,
    session: SearchSession,
    config: RunConfig,
    retry_policy: RetryPolicy,
    logger: logging.Logger,
) -> SearchResult:
    """Run the full search workflow for one postcode.

    Every failure except a lost browser session is returned as a failed
    result with zero records.
    """
    stage = UnitStage.IDLE
    try:
        stage = UnitStage.NAVIGATING
        navigate_to_search_page(
            session=session, config=config, retry_policy=retry_policy, logger=logger
        )
        stage = UnitStage.FORM_FILLING
        fill_search_form(unit.postcode, session=session, config=config, logger=logger)
        stage = UnitStage.SEARCHING
        execute_search(session=session, config=config, logger=logger)
        stage = UnitStage.PAGINATING
        exhaust_pagination(session=session, config=config, logger=logger)
        stage = UnitStage.EXTRACTING
        records = extract_page(session=session, logger=logger)
        stage = UnitStage.RECORDING
        return SearchResult(unit=unit, records=tuple(records))
    except DriverFatalError:
        raise
    except Exception as exc:
        logger.error("Postcode %s failed while %s: %s", unit.postcode, stage.value, exc)
        return SearchResult.failure(unit, str(exc))


def _save_progress(
    store: CheckpointStore,
    results: Sequence[SearchResult],
    total: int,
    *,
    logger: logging.Logger,
) -> None:
    try:
        store.write_progress(results, len(results), total)
    except PersistenceError as exc:
        logger.warning("Checkpoint not saved, continuing: %s", exc)


def scrape_units(
    units: Sequence[SearchUnit],
    *,
    session: SearchSession,
    config: RunConfig,
    store: CheckpointStore,
    logger: logging.Logger,
    stop_event: threading.Event | None = None,
    retry_policy: RetryPolicy | None = None,
) -> dict[str, Any]:
    """Process units in order from the resume point and return the aggregate."""
    retry_policy = retry_policy or retry_policy_from_config(config)
    total = len(units)
    start_index = compute_resume_index(units, config.resume_from, logger=logger)

    results: list[SearchResult] = []
    if start_index > 0:
        prior = store.load_progress()
        results = seed_results(prior, units, start_index)
        if prior is None:
            logger.warning(
                "No checkpoint at %s; postcodes before %s will be missing from the results",
                store.progress_path,
                units[start_index].postcode,
            )
        elif len(results) < start_index:
            logger.warning(
                "Checkpoint covers %d of the %d postcodes before %s; resuming from %s instead",
                len(results),
                start_index,
                units[start_index].postcode,
                units[len(results)].postcode,
            )
            start_index = len(results)
        if results:
            logger.info("Restored %d earlier postcode results from checkpoint", len(results))

    indices: Iterable[int] = range(start_index, total)
    progress_bar = None
    if config.show_progress:
        progress_bar = tqdm(indices, total=total, initial=start_index, desc="postcodes")
        indices = progress_bar

    processed = 0
    members_found = sum(result.record_count for result in results)
    try:
        for index in indices:
            unit = units[index]
            if stop_event is not None and stop_event.is_set():
                logger.warning(
                    "Stop requested before postcode %s; resume with: resume %s",
                    unit.postcode,
                    unit.postcode,
                )
                if config.save_progress:
                    _save_progress(store, results, total, logger=logger)
                return build_final_aggregate(
                    results, completed_at=utc_timestamp(), status=RUN_IN_PROGRESS
                )

            logger.info(
                "Processing postcode %s (%d/%d - %.1f%%)",
                unit.postcode,
                index + 1,
                total,
                (index + 1) / total * 100,
            )
            result = process_unit(
                unit, session=session, config=config, retry_policy=retry_policy, logger=logger
            )
            results.append(result)
            processed += 1
            members_found += result.record_count
            logger.info(
                "Postcode %s %s: %d members (total so far: %d)",
                unit.postcode,
                result.status,
                result.record_count,
                members_found,
            )

            if config.save_progress and processed % config.batch_size == 0:
                _save_progress(store, results, total, logger=logger)

            stopping = stop_event is not None and stop_event.is_set()
            if index < total - 1 and not stopping:
                session.wait_ms(config.delay_between_units_ms)
    except DriverFatalError as exc:
        logger.error("Browser session failed, aborting run: %s", exc)
        if results:
            try:
                store.write_partial(results, status=RUN_FAILED)
            except PersistenceError as write_exc:
                logger.error("Could not save partial results: %s", write_exc)
        raise
    finally:
        if progress_bar is not None:
            progress_bar.close()

    try:
        return store.write_final(results)
    except PersistenceError as exc:
        logger.error("Could not save final results: %s", exc)
        return build_final_aggregate(results, completed_at=utc_timestamp())


def search_single_postcode(
    postcode: str,
    *,
    session: SearchSession,
    config: RunConfig,
    store: CheckpointStore,
    logger: logging.Logger,
    region: str | None = None,
) -> SearchResult:
    """Search one postcode and write it in the single-search output format."""
    unit = SearchUnit(postcode=normalize_postcode(postcode), region=region)
    result = process_unit(
        unit,
        session=session,
        config=config,
        retry_policy=retry_policy_from_config(config),
        logger=logger,
    )
    if result.succeeded:
        store.write_single(result.records)
    return result


@contextmanager
def browser_session(config: RunConfig, *, logger: logging.Logger) -> Iterator[SeleniumSession]:
    session = SeleniumSession.launch(
        user_agent=config.user_agent, headless=config.headless, logger=logger
    )
    try:
        yield session
    finally:
        session.close()


def run_pipeline(
    config: RunConfig,
    units: Sequence[SearchUnit],
    *,
    logger: logging.Logger,
    stop_event: threading.Event | None = None,
) -> dict[str, Any]:
    """Build concrete dependencies, scrape every unit and write the aggregate."""
    store = CheckpointStore(config.output, logger=logger, checkpoint_path=config.checkpoint_path)
    logger.info("Postcodes to process: %d", len(units))
    with browser_session(config, logger=logger) as session:
        return scrape_units(
            units,
            session=session,
            config=config,
            store=store,
            logger=logger,
            stop_event=stop_event,
        )


def run_single_search(
    config: RunConfig, postcode: str, *, region: str | None, logger: logging.Logger
) -> SearchResult:
    store = CheckpointStore(config.output, logger=logger)
    with browser_session(config, logger=logger) as session:
        return search_single_postcode(
            postcode, session=session, config=config, store=store, logger=logger, region=region
        )
