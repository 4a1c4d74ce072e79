"""
Spreadsheet loading.

Every supported format is reduced to the same shape: a list of rows, each a
list of stripped strings, header row included. Header detection and column
resolution happen later, on the strings.
"""

import io
import math
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import structlog
from pydantic import BaseModel
from xlrd import XLRDError

from ecom_finance.pipeline.errors import FileValidationError

logger = structlog.get_logger(__name__)

PREFERRED_SHEETS = ["REPORT", "Relatório", "Report", "Movimentos", "Vendas"]
TEXT_ENCODINGS = ["utf-8-sig", "latin-1"]


class SheetData(BaseModel):
    rows: list[list[str]]
    file_type: str
    sheet_name: Optional[str] = None


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def decode_text(content: bytes) -> str:
    for encoding in TEXT_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FileValidationError("Não foi possível decodificar o arquivo (codificação desconhecida)")


def sniff_separator(text: str) -> str:
    """';' when the first non-empty line has more semicolons than commas."""
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    return ";" if first_line.count(";") > first_line.count(",") else ","


def _cell_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (pd.Timestamp, datetime)):
        if pd.isna(value):
            return ""
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    return "" if text.lower() in ("nan", "nat", "none") else text


def _frame_to_rows(df: pd.DataFrame) -> list[list[str]]:
    rows = []
    for record in df.itertuples(index=False, name=None):
        row = [_cell_to_text(v) for v in record]
        while row and row[-1] == "":
            row.pop()
        rows.append(row)
    return rows


def read_csv_rows(content: bytes) -> SheetData:
    text = decode_text(content)
    if not text.strip():
        raise FileValidationError("Arquivo vazio")
    sep = sniff_separator(text)
    df = pd.read_csv(
        io.StringIO(text),
        sep=sep,
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        on_bad_lines="skip",
        index_col=False,
        engine="python",
    )
    logger.debug("csv_loaded", separator=sep, rows=len(df))
    return SheetData(rows=_frame_to_rows(df), file_type="csv")


def pick_sheet(sheet_names: list[str]) -> str:
    lowered = {name.lower(): name for name in sheet_names}
    for preferred in PREFERRED_SHEETS:
        if preferred.lower() in lowered:
            return lowered[preferred.lower()]
    return sheet_names[0]


def read_excel_rows(content: bytes, extension: str) -> SheetData:
    engine = "xlrd" if extension == ".xls" else "openpyxl"
    try:
        workbook = pd.ExcelFile(io.BytesIO(content), engine=engine)
    except (ValueError, OSError, zipfile.BadZipFile, XLRDError) as exc:
        raise FileValidationError(f"Planilha inválida: {exc}") from exc
    if not workbook.sheet_names:
        raise FileValidationError("Planilha sem abas")
    sheet = pick_sheet(workbook.sheet_names)
    df = workbook.parse(sheet, header=None, dtype=object)
    logger.debug("excel_loaded", sheet=sheet, rows=len(df))
    return SheetData(rows=_frame_to_rows(df), file_type=extension.lstrip("."), sheet_name=sheet)


def read_table(content: bytes, filename: str) -> SheetData:
    """Load a CSV/XLSX/XLS upload into string rows."""
    extension = file_extension(filename)
    if extension == ".csv" or extension == ".txt":
        sheet = read_csv_rows(content)
    elif extension in (".xlsx", ".xls"):
        sheet = read_excel_rows(content, extension)
    else:
        raise FileValidationError(f"Formato de arquivo não suportado: {extension or filename}")

    sheet.rows = [r for r in sheet.rows if any(c for c in r)]
    if not sheet.rows:
        raise FileValidationError("Arquivo sem linhas de dados")
    return sheet


def is_ofx(filename: str, content: bytes) -> bool:
    if file_extension(filename) == ".ofx":
        return True
    head = content[:512].decode("latin-1", errors="ignore").upper()
    return "OFXHEADER" in head or "<OFX>" in head
