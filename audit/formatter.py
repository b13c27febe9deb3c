"""
audit/formatter.py -- CSV rendering for audit log export.

Every free-text cell passes through _sanitize_csv_cell() before it is written.
Details, user names, error messages and user agents are attacker-influenced
(a client display name or an HTTP User-Agent header ends up in the trail), so
an exported file must never carry a live spreadsheet formula (CWE-1236).
"""

from __future__ import annotations

import csv
import io

from audit.models import AuditExportRow

_FORMULA_PREFIXES = ("=", "+", "-", "@")

CSV_HEADERS = [
    "id",
    "created_at",
    "category",
    "action",
    "user_name",
    "success",
    "ip_address",
    "details",
    "error_message",
    "user_agent",
]


def _sanitize_csv_cell(value) -> str:
    """Prefix a tab to any cell that a spreadsheet would read as a formula.

    None becomes "". A leading tab makes Excel / LibreOffice / Sheets treat the
    cell as text.
    """
    if value is None:
        return ""
    text = str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def to_csv(rows: list[AuditExportRow]) -> str:
    """Render audit export rows as CSV text, header first."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADERS)
    for r in rows:
        writer.writerow(
            [
                r.id,
                r.created_at,
                _sanitize_csv_cell(r.category),
                _sanitize_csv_cell(r.action),
                _sanitize_csv_cell(r.user_name),
                "true" if r.success else "false",
                _sanitize_csv_cell(r.ip_address),
                _sanitize_csv_cell(r.details),
                _sanitize_csv_cell(r.error_message),
                _sanitize_csv_cell(r.user_agent),
            ]
        )
    return buf.getvalue()
