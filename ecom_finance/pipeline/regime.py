"""
Accounting regime classification.

Pure function of (origin, transaction type). Every FinancialMovement gets
exactly one regime at write time; the cash-flow view reads only "caixa"
rows and the DRE reads only "competencia" rows, so no row can appear in both.

| origin                 | transaction type              | regime       |
|------------------------|-------------------------------|--------------|
| marketplace            | venda, estorno                | competencia  |
| marketplace            | repasse, fees, anything else  | caixa        |
| banco                  | any                           | caixa        |
| contas_pagar/receber   | any (written when settled)    | caixa        |
| cartao                 | pagamento_fatura              | caixa        |
| cartao                 | any line item                 | competencia  |
| manual                 | any                           | caixa        |
"""

from typing import Iterable, Optional

from ecom_finance.models.enums import MovementOrigin, Regime, TransactionType

MARKETPLACE_ACCRUAL_TYPES = {
    TransactionType.VENDA.value,
    TransactionType.ESTORNO.value,
}
CARD_INVOICE_PAYMENT = "pagamento_fatura"


def determine_regime(origem: str, tipo_transacao: Optional[str] = None) -> str:
    origem = (origem or "").lower()
    tipo = (tipo_transacao or "").lower()

    if origem == MovementOrigin.MARKETPLACE.value:
        if tipo in MARKETPLACE_ACCRUAL_TYPES:
            return Regime.COMPETENCIA.value
        return Regime.CAIXA.value
    if origem == MovementOrigin.CARTAO.value:
        if tipo == CARD_INVOICE_PAYMENT:
            return Regime.CAIXA.value
        return Regime.COMPETENCIA.value
    # banco, contas_pagar, contas_receber, manual
    return Regime.CAIXA.value


def appears_in_cash_flow(movement: dict) -> bool:
    return movement.get("regime") == Regime.CAIXA.value


def appears_in_dre(movement: dict) -> bool:
    return movement.get("regime") == Regime.COMPETENCIA.value


def partition(movements: Iterable[dict]) -> tuple[list[dict], list[dict]]:
    """(cash-flow rows, DRE rows)."""
    caixa, competencia = [], []
    for movement in movements:
        if appears_in_cash_flow(movement):
            caixa.append(movement)
        elif appears_in_dre(movement):
            competencia.append(movement)
    return caixa, competencia
