"""XLSX error report for rows an import rejected."""
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font

from app.services.row_validator import RowError

REPORT_HEADERS = ["Row", "Column", "Field", "Value", "Error"]
REPORT_WIDTHS = {"A": 8, "B": 25, "C": 22, "D": 30, "E": 60}
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def build_error_report(errors: list[RowError]) -> bytes:
    """One line per field error, in row order."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Import Errors"

    ws.append(REPORT_HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for error in errors:
        ws.append([error.row, error.column or "", error.field or "", error.value or "", error.message])

    for column, width in REPORT_WIDTHS.items():
        ws.column_dimensions[column].width = width
    ws.freeze_panes = "A2"

    output = BytesIO()
    wb.save(output)
    return output.getvalue()


def error_report_path(audit_id, job_id) -> str:
    return f"imports/{audit_id}/{job_id}_errors.xlsx"
