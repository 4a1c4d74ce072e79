"""
Shared test fixtures.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from ecom_finance.reports.sales_summary import PROCEDURE, vendas_resumo_procedure
from ecom_finance.storage.memory_store import MemoryDataStore

EMPRESA = "11111111-1111-1111-1111-111111111111"


@pytest.fixture
def empresa_id():
    return EMPRESA


@pytest.fixture
def store():
    """In-process store with the procedures the reports call."""
    return MemoryDataStore(procedures={PROCEDURE: vendas_resumo_procedure})


@pytest.fixture
async def product(store):
    """A product with 4 units in stock and an average cost of 30."""
    return (await store.insert("produtos", [{
        "empresa_id": EMPRESA,
        "nome": "Camiseta Azul",
        "sku": "CAM-AZ",
        "custo_medio": Decimal("30.00"),
        "estoque_atual": Decimal("4"),
        "ativo": True,
    }]))[0]


@pytest.fixture
def sample_amounts():
    """Brazilian and US amount samples: (raw, expected, negative)."""
    return [
        ("R$ 1.234,56", "1234.56", False),
        ("1,234.56", "1234.56", False),
        ("1.234.567", "1234567", False),
        ("12,5", "12.5", False),
        ("(1.234,56)", "-1234.56", True),
        ("1.234,56-", "-1234.56", True),
        ("-75,50", "-75.50", True),
        ("0,01", "0.01", False),
    ]


@pytest.fixture
def sample_date_strings():
    """Day-first date samples: (raw, ISO)."""
    return [
        ("15/03/2024", "2024-03-15"),
        ("15-03-2024", "2024-03-15"),
        ("15.03.2024", "2024-03-15"),
        ("15/03/24", "2024-03-15"),
        ("2024-03-15", "2024-03-15"),
        ("2024-03-15T10:20:00.000-03:00", "2024-03-15"),
        ("15 de março de 2024 10:20 hs.", "2024-03-15"),
    ]


def ml_report(rows: list[str]) -> bytes:
    """Mercado Livre fee report as semicolon CSV bytes."""
    header = "Data da tarifa;Tipo de tarifa;Número da venda;Valor da transação;Valor líquido;ID da tarifa"
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


@pytest.fixture
def ml_sales_csv():
    return ml_report([
        "15/03/2024;Venda;2000001;100,00;85,00;T1",
        "16/03/2024;Venda;2000002;50,00;42,50;T2",
        "17/03/2024;Comissão;2000001;15,00;-15,00;T3",
    ])


# Banco do Brasil checking account, one credit and one debit
OFX_STATEMENT = """OFXHEADER:100
DATA:OFXSGML
VERSION:102

<OFX>
<BANKMSGSRSV1><STMTTRNRS><STMTRS>
<CURDEF>BRL
<BANKACCTFROM>
<BANKID>1
<BRANCHID>1234
<ACCTID>99887
<ACCTTYPE>CHECKING
</BANKACCTFROM>
<BANKTRANLIST>
<DTSTART>20240301
<DTEND>20240331
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240315120000[-3:BRT]
<TRNAMT>1500.00
<FITID>A1
<MEMO>PIX RECEBIDO MERCADO PAGO
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240316
<TRNAMT>-89,90
<FITID>A2
<NAME>TARIFA
<MEMO>Pacote de servicos
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>1410.10
<DTASOF>20240331
</LEDGERBAL>
</STMTRS></STMTTRNRS></BANKMSGSRSV1>
</OFX>
"""


async def add_sale(
    store,
    sku: str = "CAM-AZ",
    quantidade: int = 1,
    produto_id: Optional[str] = None,
    canal: str = "mercado_livre",
    status: str = "importado",
    referencia: str = "T1",
    preco_total: Optional[Decimal] = Decimal("100.00"),
) -> dict:
    """A stored sale with one item."""
    transaction = (await store.insert("marketplace_transactions", [{
        "empresa_id": EMPRESA,
        "canal": canal,
        "referencia_externa": referencia,
        "pedido_id": f"P-{referencia}",
        "data_transacao": date(2024, 3, 15),
        "descricao": "Venda",
        "tipo_transacao": "venda",
        "tipo_lancamento": "credito",
        "valor_bruto": Decimal("100.00"),
        "valor_liquido": Decimal("85.00"),
        "status": status,
    }]))[0]
    await store.insert("marketplace_transaction_items", [{
        "transaction_id": transaction["id"],
        "empresa_id": EMPRESA,
        "canal": canal,
        "sku_marketplace": sku,
        "descricao_item": "Camiseta Azul",
        "quantidade": quantidade,
        "preco_total": preco_total,
        "produto_id": produto_id,
    }])
    return transaction
