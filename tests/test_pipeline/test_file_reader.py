"""
Tests for spreadsheet loading.
"""

import io
from datetime import datetime

import pytest
from openpyxl import Workbook

from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.file_reader import decode_text, is_ofx, pick_sheet, read_table, sniff_separator


class TestCsv:

    def test_semicolon_separator(self):
        sheet = read_table(b"Data;Valor\n15/03/2024;10,50\n", "r.csv")
        assert sheet.rows == [["Data", "Valor"], ["15/03/2024", "10,50"]]
        assert sheet.file_type == "csv"

    def test_comma_separator(self):
        assert sniff_separator("a,b,c\n1,2,3") == ","
        assert sniff_separator("\n\na;b\n") == ";"

    def test_latin1_fallback(self):
        assert decode_text("Descrição".encode("latin-1")) == "Descrição"

    def test_bom_stripped(self):
        sheet = read_table("Data;Valor\n15/03/2024;1\n".encode("utf-8-sig"), "r.csv")
        assert sheet.rows[0][0] == "Data"

    def test_blank_rows_dropped(self):
        sheet = read_table(b"Data;Valor\n;\n15/03/2024;1\n", "r.csv")
        assert len(sheet.rows) == 2

    def test_empty_file(self):
        with pytest.raises(FileValidationError):
            read_table(b"   ", "r.csv")


class TestExcel:

    def _xlsx(self, sheets: dict) -> bytes:
        wb = Workbook()
        wb.remove(wb.active)
        for name, rows in sheets.items():
            ws = wb.create_sheet(name)
            for row in rows:
                ws.append(row)
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    def test_cells_become_strings(self):
        content = self._xlsx({"Vendas": [["Data", "Qtd", "Valor"], [datetime(2024, 3, 15), 2, 85.5]]})
        sheet = read_table(content, "r.xlsx")
        assert sheet.rows == [["Data", "Qtd", "Valor"], ["2024-03-15", "2", "85.5"]]
        assert sheet.sheet_name == "Vendas"

    def test_preferred_sheet(self):
        content = self._xlsx({"Capa": [["x", "y"]], "REPORT": [["Data", "Valor"], ["15/03/2024", "1"]]})
        assert read_table(content, "r.xlsx").sheet_name == "REPORT"

    def test_pick_sheet_defaults_to_first(self):
        assert pick_sheet(["Plan1", "Plan2"]) == "Plan1"

    def test_corrupt_workbook(self):
        with pytest.raises(FileValidationError):
            read_table(b"not a zip", "r.xlsx")


class TestFormats:

    def test_unsupported_extension(self):
        with pytest.raises(FileValidationError):
            read_table(b"%PDF-1.4", "r.pdf")

    def test_ofx_detection(self):
        assert is_ofx("extrato.ofx", b"")
        assert is_ofx("extrato.txt", b"OFXHEADER:100\nDATA:OFXSGML")
        assert not is_ofx("r.csv", b"Data;Valor")
