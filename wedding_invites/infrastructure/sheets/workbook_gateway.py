"""
Workbook Gateway - Guest List and RSVP Spreadsheets
====================================================

Reads the guest list and writes RSVP responses using pandas.
A sheet id is the path of an .xlsx, .xls or .csv workbook.

Guest columns are auto-detected from the header row (English or Hebrew).
When a header is not recognized, the classic layout of the wedding sheet
is assumed: A = first name, L = addons, N = send flag ("v"), O = sender,
and the phone is the first cell in the row that looks like a phone number.
"""

import logging
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ...domain.errors import DataSourceError
from ...domain.models import Guest
from ...domain.phone import DEFAULT_COUNTRY_CODE, normalize_phone

logger = logging.getLogger(__name__)

# Common column name variations for auto-detection
NAME_PATTERNS = ['first name', 'name', 'שם פרטי', 'שם']
PHONE_PATTERNS = ['phone', 'mobile', 'cell', 'whatsapp', 'טלפון', 'נייד']
ADDONS_PATTERNS = ['addons', 'add-ons', 'partner', 'plus one', 'תוספות', 'מלווים']
SEND_PATTERNS = ['send confirmation', 'should send', 'send', 'לשלוח']
SENDER_PATTERNS = ['sender', 'from', 'שולח']

# Fixed positions of the original wedding sheet (0-based)
NAME_INDEX = 0
ADDONS_INDEX = 11
SEND_INDEX = 13
SENDER_INDEX = 14

SEND_MARK = 'v'
PHONE_SHAPE = re.compile(r'[\d\s\-+()]{8,}')

RESPONSE_COLUMNS = ['Name', 'Phone', 'RSVP Status', 'Number of Guests', 'Timestamp']


class SpreadsheetGateway(ABC):
    """Everything the application needs from the spreadsheets."""

    @abstractmethod
    def fetch_guests(self, sheet_id: str) -> List[Guest]:
        ...

    @abstractmethod
    def fetch_senders_distinct(self, sheet_id: str) -> List[str]:
        ...

    @abstractmethod
    def mark_send_status(self, sheet_id: str, phone: str, should_send: bool) -> None:
        ...

    @abstractmethod
    def append_or_update_response(
        self, sheet_id: str, name: str, phone: str, attending: bool, guest_count: int
    ) -> str:
        ...


def filter_guests_by_sender(
    guests: Sequence[Guest], sender: str, only_pending: bool = True
) -> List[Guest]:
    """Guests assigned to a sender, optionally only those marked to send."""
    wanted = sender.strip()
    return [
        guest for guest in guests
        if guest.sender.strip() == wanted and (guest.send_confirmation or not only_pending)
    ]


class WorkbookGateway(SpreadsheetGateway):
    """
    Spreadsheet gateway over local workbooks.

    Usage:
        gateway = WorkbookGateway(worksheet="חתונה")
        guests = gateway.fetch_guests("guests.xlsx")
        gateway.append_or_update_response("responses.xlsx", "Dana", "0501234567", True, 2)
    """

    def __init__(self, worksheet: Optional[str] = None, country_code: str = DEFAULT_COUNTRY_CODE):
        self.worksheet = worksheet
        self.country_code = country_code
        # Route handlers run in a thread pool; writes are read-modify-write
        self._lock = threading.Lock()

    # ── Guests ────────────────────────────────────────────────────

    def fetch_guests(self, sheet_id: str) -> List[Guest]:
        df = self._read(sheet_id)
        if df.empty:
            return []

        columns = self._detect_columns(df)
        logger.info(f"Detected guest columns: {columns}")

        guests = []
        for position, (_, row) in enumerate(df.iterrows()):
            name = self._cell(row, columns.get('name'))
            phone = self._cell(row, columns.get('phone')) if columns.get('phone') else self._find_phone(row)
            if not name or not phone:
                continue

            guests.append(Guest(
                name=name,
                phone=phone,
                addons=self._cell(row, columns.get('addons')),
                sender=self._cell(row, columns.get('sender')),
                send_confirmation=self._cell(row, columns.get('send')).lower() == SEND_MARK,
                row_number=position + 2,  # header is row 1
            ))

        logger.info(f"Parsed {len(guests)} guests from {sheet_id}")
        return guests

    def fetch_senders_distinct(self, sheet_id: str) -> List[str]:
        senders = []
        for guest in self.fetch_guests(sheet_id):
            sender = guest.sender.strip()
            if sender and sender not in senders:
                senders.append(sender)
        return senders

    def mark_send_status(self, sheet_id: str, phone: str, should_send: bool) -> None:
        target = normalize_phone(phone, self.country_code)
        if not target:
            raise DataSourceError(f"Invalid phone number: {phone!r}")

        with self._lock:
            df = self._read(sheet_id)
            columns = self._detect_columns(df)
            send_col = columns.get('send')
            if not send_col:
                raise DataSourceError("Could not detect the send confirmation column")

            if columns.get('phone'):
                phones = df[columns['phone']].map(lambda cell: normalize_phone(cell, self.country_code))
            else:
                phones = df.apply(
                    lambda row: normalize_phone(self._find_phone(row), self.country_code), axis=1
                )
            matches = phones == target
            if not matches.any():
                raise DataSourceError(f"Phone {phone} not found in guest sheet")

            df.loc[matches, send_col] = SEND_MARK if should_send else ''
            self._write(sheet_id, df)

        logger.info(f"Send status for {phone} set to {should_send}")

    # ── Responses ─────────────────────────────────────────────────

    def append_or_update_response(
        self, sheet_id: str, name: str, phone: str, attending: bool, guest_count: int
    ) -> str:
        """Record an RSVP. Returns "updated" or "added"."""
        values = {
            'Name': name,
            'Phone': phone,
            'RSVP Status': 'Yes' if attending else 'No',
            'Number of Guests': str(guest_count),
            'Timestamp': datetime.now(timezone.utc).isoformat(),
        }

        with self._lock:
            if Path(sheet_id).exists():
                df = self._read(sheet_id)
            else:
                df = pd.DataFrame(columns=RESPONSE_COLUMNS)

            if list(df.columns[:len(RESPONSE_COLUMNS)]) != RESPONSE_COLUMNS:
                if not df.empty:
                    raise DataSourceError(f"Unexpected response sheet header in {sheet_id}")
                logger.info("Initialized response sheet headers")
                df = pd.DataFrame(columns=RESPONSE_COLUMNS)

            existing = df.index[df['Phone'].astype(str) == phone]
            if len(existing):
                for column, value in values.items():
                    df.loc[existing[0], column] = value
                outcome = 'updated'
                logger.info(f"Updated RSVP for {name} at row {existing[0] + 2}")
            else:
                new_row = pd.DataFrame([values], columns=RESPONSE_COLUMNS)
                df = new_row if df.empty else pd.concat([df, new_row], ignore_index=True)
                outcome = 'added'
                logger.info(f"Added new RSVP for {name}")

            self._write(sheet_id, df)
        return outcome

    # ── File access ───────────────────────────────────────────────

    def _read(self, sheet_id: str) -> pd.DataFrame:
        path = Path(sheet_id)
        if not path.exists():
            raise DataSourceError(f"Sheet not found: {sheet_id}")

        ext = path.suffix.lower()
        try:
            if ext == '.csv':
                return pd.read_csv(path, dtype=str, keep_default_na=False)
            if ext in ('.xlsx', '.xls'):
                return pd.read_excel(
                    path, sheet_name=self._sheet_name(path), dtype=str, keep_default_na=False
                )
        except Exception as e:
            logger.error(f"Failed to read {sheet_id}: {e}")
            raise DataSourceError(f"Failed to read {sheet_id}: {e}") from e

        raise DataSourceError(f"Unsupported file format: {ext}. Use .xlsx, .xls, or .csv")

    def _write(self, sheet_id: str, df: pd.DataFrame) -> None:
        path = Path(sheet_id)
        ext = path.suffix.lower()
        try:
            if ext == '.csv':
                df.to_csv(path, index=False)
            elif ext == '.xlsx' and path.exists():
                # Replace only our worksheet; other tabs stay as they are
                with pd.ExcelWriter(path, engine='openpyxl', mode='a', if_sheet_exists='replace') as writer:
                    df.to_excel(writer, sheet_name=self._sheet_name(path), index=False)
            elif ext == '.xlsx':
                df.to_excel(path, sheet_name=self.worksheet or 'Sheet1', index=False)
            else:
                raise DataSourceError(f"Cannot write {ext} files. Use .xlsx or .csv")
        except DataSourceError:
            raise
        except Exception as e:
            logger.error(f"Failed to write {sheet_id}: {e}")
            raise DataSourceError(f"Failed to write {sheet_id}: {e}") from e

    def _sheet_name(self, path: Path) -> str:
        """The configured worksheet if the workbook has it, else the first one."""
        with pd.ExcelFile(path) as workbook:
            names = workbook.sheet_names
        return self.worksheet if self.worksheet in names else names[0]

    # ── Column detection ──────────────────────────────────────────

    def _detect_columns(self, df: pd.DataFrame) -> Dict[str, Optional[str]]:
        headers = [str(col) for col in df.columns]
        taken: List[str] = []

        def find(patterns: List[str], index: Optional[int] = None) -> Optional[str]:
            col = self._find_column(headers, patterns, taken)
            if col is None and index is not None and index < len(headers) and headers[index] not in taken:
                col = headers[index]
            if col is not None:
                taken.append(col)
            return col

        # Sender first: "send" would otherwise match "sender"
        sender = find(SENDER_PATTERNS, SENDER_INDEX)
        send = find(SEND_PATTERNS, SEND_INDEX)
        phone = find(PHONE_PATTERNS)
        addons = find(ADDONS_PATTERNS, ADDONS_INDEX)
        name = find(NAME_PATTERNS, NAME_INDEX)
        return {'name': name, 'phone': phone, 'addons': addons, 'send': send, 'sender': sender}

    @staticmethod
    def _find_column(headers: List[str], patterns: List[str], taken: List[str]) -> Optional[str]:
        """Find the first column whose header contains any of the patterns."""
        for pattern in patterns:
            for col in headers:
                if col in taken:
                    continue
                if pattern in col.strip().lower():
                    return col
        return None

    @staticmethod
    def _cell(row: pd.Series, column: Optional[str]) -> str:
        if not column:
            return ''
        value = str(row.get(column, '')).strip()
        return '' if value.lower() == 'nan' else value

    @staticmethod
    def _find_phone(row: pd.Series) -> str:
        """First cell that looks like a phone number (8+ digits)."""
        for value in row.tolist():
            cell = str(value).strip()
            if PHONE_SHAPE.fullmatch(cell) and len(re.sub(r'\D', '', cell)) >= 8:
                return cell
        return ''
