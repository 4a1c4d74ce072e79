"""
Tests for OFX bank statement parsing.
"""

from datetime import date
from decimal import Decimal

import pytest

from ecom_finance.pipeline.errors import FileValidationError
from ecom_finance.pipeline.ofx_parser import parse_ofx, parse_ofx_amount, parse_ofx_date, tag_value
from tests.conftest import OFX_STATEMENT


class TestFields:

    def test_dates(self):
        assert parse_ofx_date("20240315120000[-3:BRT]") == date(2024, 3, 15)
        assert parse_ofx_date("20240315") == date(2024, 3, 15)
        assert parse_ofx_date("19990101") is None
        assert parse_ofx_date("2024") is None

    def test_amounts(self):
        assert parse_ofx_amount("-89,90") == Decimal("-89.90")
        assert parse_ofx_amount("1,500.00") == Decimal("1500.00")
        assert parse_ofx_amount("abc") is None

    def test_tag_value_sgml_and_xml(self):
        assert tag_value("<ACCTID>123\n<X>", "ACCTID") == "123"
        assert tag_value("<ACCTID>123</ACCTID>", "acctid") == "123"
        assert tag_value("<OTHER>1", "ACCTID") is None


class TestStatement:

    def test_sgml_statement(self):
        statement = parse_ofx(OFX_STATEMENT)
        assert statement.banco_id == "001"
        assert statement.banco_nome == "Banco do Brasil"
        assert statement.conta_id == "99887"
        assert statement.saldo == Decimal("1410.10")
        assert len(statement.transacoes) == 2

        credit, debit = statement.transacoes
        assert credit.tipo_lancamento == "credito"
        assert credit.valor == Decimal("1500.00")
        assert credit.referencia_externa == "A1"
        assert debit.tipo_lancamento == "debito"
        assert debit.valor == Decimal("89.90")
        assert debit.descricao == "TARIFA - Pacote de servicos"

    def test_fallback_reference_without_fitid(self):
        content = "<OFX><STMTTRN><DTPOSTED>20240315<TRNAMT>10.00<MEMO>Deposito</STMTTRN></OFX>"
        tx = parse_ofx(content).transacoes[0]
        assert tx.referencia_externa.startswith("ofx_20240315_")
        assert parse_ofx(content).transacoes[0].referencia_externa == tx.referencia_externa

    def test_no_transactions(self):
        with pytest.raises(FileValidationError):
            parse_ofx("<OFX></OFX>")
