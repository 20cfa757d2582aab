from __future__ import annotations

import logging
import time
from typing import Any

import requests

from .errors import FetchError
from .session_capture import USER_AGENT, CapturedSession


logger = logging.getLogger(__name__)

BASE_URL = "https://connect.garmin.com"
SPLITS_URL_TEMPLATE = f"{BASE_URL}/activity-service/activity/{{activity_id}}/splits"
ACTIVITY_PAGE_TEMPLATE = f"{BASE_URL}/modern/activity/{{activity_id}}"
TIMEOUT_SECONDS = 30
ERROR_BODY_LIMIT = 500

STATIC_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Accept-Language": "en-US,en;q=0.5",
    "X-Requested-With": "XMLHttpRequest",
    "NK": "NT",
    "DI-Backend": "connectapi.garmin.com",
    "X-app-ver": "5.11.3.3",
    "X-lang": "en-US",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
}


def build_splits_headers(session: CapturedSession, activity_id: str) -> dict[str, str]:
    headers = {
        "Authorization": session.authorization,
        "Cookie": session.cookie,
        "User-Agent": USER_AGENT,
        "Referer": ACTIVITY_PAGE_TEMPLATE.format(activity_id=activity_id),
    }
    headers.update(STATIC_HEADERS)
    return headers


def fetch_splits(
    session: CapturedSession,
    activity_id: str,
    *,
    timeout_seconds: int = TIMEOUT_SECONDS,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """GET the splits document for ``activity_id`` using the captured browser headers."""
    url = SPLITS_URL_TEMPLATE.format(activity_id=activity_id)
    cache_buster = now_ms if now_ms is not None else int(time.time() * 1000)
    logger.info("Fetching splits for activity ID %s from %s", activity_id, url)

    try:
        response = requests.get(
            url,
            params={"_": cache_buster},
            headers=build_splits_headers(session, activity_id),
            timeout=timeout_seconds,
        )
    except requests.RequestException as exc:
        logger.error("Splits request failed: %s", exc)
        raise FetchError(f"Failed to fetch splits: {exc}") from exc

    logger.info("Fetch status: %s %s", response.status_code, response.reason)
    if not 200 <= response.status_code < 300:
        excerpt = (response.text or "")[:ERROR_BODY_LIMIT]
        logger.error("Split fetch failed: %s %s", response.status_code, response.reason)
        logger.error("URL: %s", url)
        logger.error("Response Text: %s...", excerpt)
        raise FetchError(
            f"Failed to fetch splits: {response.status_code} {response.reason}",
            status_code=response.status_code,
            body_excerpt=excerpt,
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise FetchError("Splits response was not valid JSON.", status_code=response.status_code) from exc
    if not isinstance(payload, dict):
        logger.warning("Splits response was not a JSON object; treating it as empty.")
        return {}
    return payload


def extract_laps(payload: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    laps = payload.get("lapDTOs")
    if not isinstance(laps, list):
        return []
    return [item for item in laps if isinstance(item, dict)]
