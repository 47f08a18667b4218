from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
HEADER_ROW = ["Name", "Email", "Phone", "Message", "Timestamp"]


class Lead(BaseModel):
    name: str
    email: str
    phone: str
    message: Optional[str] = None


def lead_row(lead: Lead, now: Optional[datetime] = None) -> List[str]:
    ts = (now or datetime.now(timezone.utc)).isoformat()
    return [lead.name, lead.email, lead.phone, lead.message or "", ts]


class GoogleSheetLeadSink:
    """Appends leads as rows to the first sheet of a spreadsheet.

    Credentials come from the GOOGLE_CREDS env var (service-account JSON).
    """

    def __init__(self, creds_json: Optional[str] = None, service: Any = None) -> None:
        self._creds_json = creds_json
        self._service = service

    def _get_service(self) -> Any:
        if self._service is not None:
            return self._service
        raw = self._creds_json or os.getenv("GOOGLE_CREDS")
        if not raw:
            raise RuntimeError("GOOGLE_CREDS is not set")
        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        info: Dict[str, Any] = json.loads(raw)
        creds = service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
        self._service = build("sheets", "v4", credentials=creds, cache_discovery=False)
        return self._service

    def append(self, lead: Lead, sheet_id: str) -> None:
        values = self._get_service().spreadsheets().values()
        existing = values.get(spreadsheetId=sheet_id, range="A1:E1").execute()
        if not existing.get("values"):
            values.update(
                spreadsheetId=sheet_id,
                range="A1:E1",
                valueInputOption="RAW",
                body={"values": [HEADER_ROW]},
            ).execute()
        values.append(
            spreadsheetId=sheet_id,
            range="A1",
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [lead_row(lead)]},
        ).execute()
        logger.info(f"Lead appended to sheet {sheet_id}")
