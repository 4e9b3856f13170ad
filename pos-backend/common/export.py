# common/export.py
"""
CSV export helpers shared by the client and points exports.
"""
import csv
from io import StringIO
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.http import HttpResponse
from django.utils import timezone


def export_to_csv(rows: List[Dict[str, Any]], fieldnames: Optional[List[str]] = None) -> str:
    """
    Export a list of dictionaries to CSV text.

    When ``fieldnames`` is given the header is written even for an empty export.
    """
    if not rows and not fieldnames:
        return ""

    output = StringIO()
    if fieldnames is None:
        fieldnames = list(rows[0].keys())

    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()

    for row in rows:
        csv_row = {}
        for key, value in row.items():
            if isinstance(value, Decimal):
                csv_row[key] = str(value)
            elif isinstance(value, (datetime, date)):
                csv_row[key] = value.isoformat()
            elif value is None:
                csv_row[key] = ""
            else:
                csv_row[key] = value
        writer.writerow(csv_row)

    return output.getvalue()


def csv_response(content: str, tenant, name: str) -> HttpResponse:
    timestamp = timezone.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{tenant.code}_{name}_{timestamp}.csv"
    response = HttpResponse(content, content_type="text/csv; charset=utf-8")
    response["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response
