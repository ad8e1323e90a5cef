"""
Выгрузка данных в Excel.
"""

from datetime import datetime
from io import BytesIO
from typing import Any, Iterable, List, Sequence
from urllib.parse import quote

from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")


def build_workbook(title: str, headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> Workbook:
    """Создаёт книгу с одним листом: стилизованная шапка и данные."""
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]

    for col_num, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_num, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")

    for row_num, row in enumerate(rows, 2):
        for col_num, value in enumerate(row, 1):
            cell = ws.cell(row=row_num, column=col_num, value=value)
            if isinstance(value, float):
                cell.number_format = '#,##0.00'

    # Автоматическая ширина колонок
    for col in ws.columns:
        col_letter = col[0].column_letter
        max_length = max((len(str(cell.value)) for cell in col if cell.value is not None), default=0)
        ws.column_dimensions[col_letter].width = min(max_length + 2, 50)

    return wb


def workbook_response(wb: Workbook, filename_prefix: str) -> StreamingResponse:
    """Отдаёт книгу как xlsx-файл."""
    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    filename = f"{filename_prefix}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return StreamingResponse(
        buffer,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
    )


def export_xlsx(title: str, headers: List[str], rows: Iterable[Sequence[Any]], filename_prefix: str) -> StreamingResponse:
    return workbook_response(build_workbook(title, headers, rows), filename_prefix)
