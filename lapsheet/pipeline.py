from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from playwright.async_api import Error as PlaywrightError

from .config import Settings
from .errors import LapSheetError, SessionAcquisitionError
from .lap_report import activity_date_key, aggregate_laps, serialize_report
from .session_capture import CapturedSession, acquire_session
from .sheets_publisher import build_client, load_service_account_info, publish_report
from .splits_client import extract_laps, fetch_splits


logger = logging.getLogger(__name__)

Acquirer = Callable[[Settings], tuple[CapturedSession, str]]
Fetcher = Callable[..., dict[str, Any]]
Publisher = Callable[[Settings, str, str], str]


def _acquire_with_browser(settings: Settings) -> tuple[CapturedSession, str]:
    return asyncio.run(acquire_session(settings))


def _publish_to_sheets(settings: Settings, report_text: str, sheet_title: str) -> str:
    settings.validate_publishing()
    info = load_service_account_info(settings.service_account_key_base64)
    client = build_client(info)
    return publish_report(client, settings.spreadsheet_id or "", report_text, sheet_title)


def _error_result(category: str, message: str) -> dict[str, Any]:
    return {"status": "error", "category": category, "message": message}


def run_once(
    settings: Settings | None = None,
    *,
    publish: bool = True,
    acquire: Acquirer = _acquire_with_browser,
    fetch: Fetcher = fetch_splits,
    publisher: Publisher = _publish_to_sheets,
) -> dict[str, Any]:
    """Run the whole job once: log in, fetch the latest matching activity's laps, publish them."""
    settings = settings or Settings.from_env()
    logger.info("Starting run.")

    try:
        settings.validate_credentials()

        session, activity_id = acquire(settings)

        payload = fetch(session, activity_id, timeout_seconds=settings.http_timeout_seconds)
        laps = extract_laps(payload)

        report = aggregate_laps(laps, activity_id)
        report_text = serialize_report(report)
        if report.placeholder:
            logger.warning("API returned data, but no laps (lapDTOs) were found in the response.")

        sheet_title = None
        if publish:
            date_key = activity_date_key(laps, settings.timezone)
            sheet_title = publisher(settings, report_text, date_key)
        else:
            logger.info("Publishing disabled; skipping spreadsheet upload.")
    except LapSheetError as exc:
        logger.error("Run failed (%s): %s", exc.category, exc)
        return _error_result(exc.category, str(exc))
    except PlaywrightError as exc:
        logger.error("Run failed (browser): %s", exc)
        return _error_result(SessionAcquisitionError.category, str(exc))
    except Exception as exc:
        logger.exception("Run failed unexpectedly.")
        return _error_result("unexpected", str(exc))

    logger.info("Processed splits successfully for activity %s.", activity_id)
    return {
        "status": "ok",
        "activity_id": activity_id,
        "report": report_text,
        "laps": laps,
        "sheet_title": sheet_title,
    }
