from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

import gspread
from google.oauth2 import service_account

from .errors import ConfigurationError, PublishError
from .lap_report import report_rows


logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
FALLBACK_SUFFIX = "-2"
VALUE_INPUT_OPTION = "RAW"


def load_service_account_info(key_base64: str | None) -> dict[str, Any]:
    """Decode the base64 service-account key into its JSON object."""
    if not key_base64:
        raise ConfigurationError("Missing SERVICE_ACCOUNT_KEY_BASE64")
    try:
        decoded = base64.b64decode(key_base64, validate=False).decode("utf-8")
        info = json.loads(decoded)
        # Keys exported as a JSON string literal carry one more layer of encoding.
        if isinstance(info, str):
            info = json.loads(info)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ConfigurationError(f"SERVICE_ACCOUNT_KEY_BASE64 could not be parsed: {exc}") from exc
    if not isinstance(info, dict):
        raise ConfigurationError("SERVICE_ACCOUNT_KEY_BASE64 does not hold a JSON object.")
    return info


def build_client(info: dict[str, Any]) -> gspread.Client:
    try:
        credentials = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid service account key: {exc}") from exc
    return gspread.authorize(credentials)


def is_duplicate_sheet_error(exc: Exception) -> bool:
    if not isinstance(exc, gspread.exceptions.APIError):
        return False
    detail = getattr(exc, "error", None)
    if isinstance(detail, dict):
        for item in detail.get("errors") or []:
            if isinstance(item, dict) and item.get("reason") == "duplicate":
                return True
        if "already exists" in str(detail.get("message") or ""):
            return True
    return "already exists" in str(exc)


def create_sheet_tab(spreadsheet: Any, title: str, *, rows: int, cols: int) -> str:
    """Add a tab named ``title``; if that name is taken, add ``title-2`` instead."""
    try:
        spreadsheet.add_worksheet(title=title, rows=rows, cols=cols)
        return title
    except Exception as exc:
        if not is_duplicate_sheet_error(exc):
            logger.error('Failed to create sheet tab "%s": %s', title, exc)
            raise PublishError(f'Failed to create sheet tab "{title}": {exc}') from exc

    fallback_title = f"{title}{FALLBACK_SUFFIX}"
    logger.warning('Sheet "%s" already exists. Trying "%s"...', title, fallback_title)
    try:
        spreadsheet.add_worksheet(title=fallback_title, rows=rows, cols=cols)
    except Exception as exc:
        logger.error('Failed to create sheet tab "%s": %s', fallback_title, exc)
        raise PublishError(f'Failed to create sheet tab "{fallback_title}": {exc}') from exc
    return fallback_title


def publish_report(client: Any, spreadsheet_id: str, report_text: str, sheet_title: str) -> str:
    """Write the report into a new dated tab and return the tab name that was used."""
    rows = report_rows(report_text)
    width = max(len(row) for row in rows)
    try:
        spreadsheet = client.open_by_key(spreadsheet_id)
    except Exception as exc:
        raise PublishError(f"Could not open spreadsheet {spreadsheet_id}: {exc}") from exc

    used_title = create_sheet_tab(spreadsheet, sheet_title, rows=max(len(rows), 1), cols=max(width, 1))

    try:
        spreadsheet.values_update(
            f"'{used_title}'!A1",
            params={"valueInputOption": VALUE_INPUT_OPTION},
            body={"values": rows},
        )
    except Exception as exc:
        logger.error('Failed to write values to sheet tab "%s": %s', used_title, exc)
        raise PublishError(f'Failed to write values to sheet tab "{used_title}": {exc}') from exc

    logger.info("Uploaded to Google Sheet tab: %s", used_title)
    return used_title
