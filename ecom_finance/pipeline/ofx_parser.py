"""
OFX bank statement parser.

Handles SGML (OFX 1.x, no closing tags) and XML (OFX 2.x) files, bank account
and credit card statements alike. Regex based: real-world Brazilian bank
exports are rarely well-formed enough for a strict parser.
"""

import hashlib
import html
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog
from pydantic import BaseModel

from ecom_finance.models.enums import EntryDirection
from ecom_finance.pipeline.errors import FileValidationError

logger = structlog.get_logger(__name__)

DEFAULT_DESCRIPTION = "Transação sem descrição"
MAX_DESCRIPTION = 255

BRAZILIAN_BANKS = {
    "001": "Banco do Brasil",
    "033": "Santander",
    "104": "Caixa Econômica Federal",
    "237": "Bradesco",
    "341": "Itaú",
    "260": "Nubank",
    "077": "Inter",
    "336": "C6 Bank",
    "208": "BTG Pactual",
    "102": "XP Investimentos",
    "212": "Banco Original",
    "756": "Sicoob",
    "748": "Sicredi",
    "422": "Safra",
    "746": "Modal",
    "655": "Votorantim",
    "070": "BRB",
    "136": "Unicred",
}

_BLOCK_END = re.compile(
    r"<STMTTRN>|</STMTTRN>|</BANKTRANLIST>|</STMTRS>|</CCSTMTRS>|<LEDGERBAL>|<AVAILBAL>",
    re.IGNORECASE,
)


class OfxTransaction(BaseModel):
    data: date
    valor: Decimal                   # absolute value
    tipo_lancamento: str             # credito, debito
    descricao: str
    nome: Optional[str] = None
    memo: Optional[str] = None
    fitid: Optional[str] = None
    trntype: Optional[str] = None
    checknum: Optional[str] = None
    refnum: Optional[str] = None
    referencia_externa: str


class OfxStatement(BaseModel):
    banco_id: Optional[str] = None
    banco_nome: Optional[str] = None
    agencia: Optional[str] = None
    conta_id: Optional[str] = None
    tipo_conta: Optional[str] = None
    moeda: Optional[str] = None
    data_inicio: Optional[date] = None
    data_fim: Optional[date] = None
    saldo: Optional[Decimal] = None
    data_saldo: Optional[date] = None
    transacoes: list[OfxTransaction] = []


def tag_value(content: str, tag: str) -> Optional[str]:
    """Value of the first <TAG>, with or without a closing tag."""
    xml = re.search(rf"<{tag}>\s*([\s\S]*?)\s*</{tag}>", content, re.IGNORECASE)
    if xml and xml.group(1).strip() and "<" not in xml.group(1):
        return xml.group(1).strip()
    sgml = re.search(rf"<{tag}>\s*([^<\r\n]+)", content, re.IGNORECASE)
    if sgml and sgml.group(1).strip():
        return sgml.group(1).strip()
    return None


def parse_ofx_date(raw: Optional[str]) -> Optional[date]:
    """YYYYMMDD[HHMMSS[.mmm]][tz]; the time and timezone parts are discarded."""
    if not raw:
        return None
    digits = raw.strip().split("[")[0].split(".")[0]
    if len(digits) < 8 or not digits[:8].isdigit():
        return None
    year, month, day = int(digits[:4]), int(digits[4:6]), int(digits[6:8])
    if not (2000 <= year <= 2100 and 1 <= month <= 12):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_ofx_amount(raw: Optional[str]) -> Optional[Decimal]:
    if not raw:
        return None
    cleaned = raw.strip()
    if re.search(r",\d{1,2}$", cleaned):
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")
    cleaned = re.sub(r"[^\d.\-]", "", cleaned)
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def clean_description(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return re.sub(r"\s+", " ", html.unescape(text)).strip()[:MAX_DESCRIPTION] or None


def _split_blocks(content: str) -> list[str]:
    xml_blocks = re.findall(r"<STMTTRN>([\s\S]*?)</STMTTRN>", content, re.IGNORECASE)
    if xml_blocks:
        return xml_blocks
    blocks = []
    for part in re.split(r"<STMTTRN>", content, flags=re.IGNORECASE)[1:]:
        end = _BLOCK_END.search(part)
        blocks.append(part[: end.start()] if end else part)
    return blocks


def _fallback_reference(data: date, amount: Decimal, description: str) -> str:
    digest = hashlib.sha1(f"{data.isoformat()}|{amount}|{description}".encode()).hexdigest()[:16]
    return f"ofx_{data.strftime('%Y%m%d')}_{digest}"


def _parse_block(block: str) -> Optional[OfxTransaction]:
    posted = parse_ofx_date(tag_value(block, "DTPOSTED"))
    amount = parse_ofx_amount(tag_value(block, "TRNAMT"))
    if posted is None or amount is None:
        logger.warning("ofx_transaction_skipped", dtposted=tag_value(block, "DTPOSTED"))
        return None

    memo = clean_description(tag_value(block, "MEMO"))
    name = clean_description(tag_value(block, "NAME"))
    if memo and name and name.lower() not in memo.lower():
        description = f"{name} - {memo}"
    else:
        description = memo or name or DEFAULT_DESCRIPTION
    description = description[:MAX_DESCRIPTION]

    fitid = tag_value(block, "FITID")
    return OfxTransaction(
        data=posted,
        valor=abs(amount),
        tipo_lancamento=EntryDirection.DEBITO.value if amount < 0 else EntryDirection.CREDITO.value,
        descricao=description,
        nome=name,
        memo=memo,
        fitid=fitid,
        trntype=tag_value(block, "TRNTYPE"),
        checknum=tag_value(block, "CHECKNUM"),
        refnum=tag_value(block, "REFNUM"),
        referencia_externa=fitid or _fallback_reference(posted, amount, description),
    )


def parse_ofx(content: str) -> OfxStatement:
    """Parse an OFX document. Raises FileValidationError when it has no transactions."""
    transactions = [t for t in (_parse_block(b) for b in _split_blocks(content)) if t]
    if not transactions:
        raise FileValidationError("Nenhuma transação encontrada no arquivo OFX")

    bank_id = tag_value(content, "BANKID")
    if bank_id and bank_id.isdigit():
        bank_id = bank_id.zfill(3)[-3:]
    ledger = re.search(r"<LEDGERBAL>([\s\S]*?)(?:</LEDGERBAL>|<AVAILBAL>|$)", content, re.IGNORECASE)
    ledger_block = ledger.group(1) if ledger else ""

    statement = OfxStatement(
        banco_id=bank_id,
        banco_nome=BRAZILIAN_BANKS.get(bank_id or "") or tag_value(content, "ORG"),
        agencia=tag_value(content, "BRANCHID"),
        conta_id=tag_value(content, "ACCTID"),
        tipo_conta=tag_value(content, "ACCTTYPE") or (
            "CREDITCARD" if re.search(r"<CCSTMTRS>", content, re.IGNORECASE) else None
        ),
        moeda=tag_value(content, "CURDEF"),
        data_inicio=parse_ofx_date(tag_value(content, "DTSTART")),
        data_fim=parse_ofx_date(tag_value(content, "DTEND")),
        saldo=parse_ofx_amount(tag_value(ledger_block, "BALAMT")) if ledger_block else None,
        data_saldo=parse_ofx_date(tag_value(ledger_block, "DTASOF")) if ledger_block else None,
        transacoes=transactions,
    )
    logger.info(
        "ofx_parsed",
        banco=statement.banco_nome,
        conta=statement.conta_id,
        transactions=len(transactions),
    )
    return statement
