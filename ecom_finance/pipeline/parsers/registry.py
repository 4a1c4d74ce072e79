"""
Parser dispatch keyed by report type.
"""

from ecom_finance.models.enums import ReportType
from ecom_finance.pipeline.parsers.base import ReportParser
from ecom_finance.pipeline.parsers.generic import GenericParser
from ecom_finance.pipeline.parsers.mercado_livre import MercadoLivreParser
from ecom_finance.pipeline.parsers.mercado_pago import MercadoPagoParser
from ecom_finance.pipeline.parsers.shopee import ShopeeParser

PARSERS: dict[ReportType, type[ReportParser]] = {
    ReportType.MERCADO_LIVRE: MercadoLivreParser,
    ReportType.MERCADO_PAGO: MercadoPagoParser,
    ReportType.SHOPEE: ShopeeParser,
    ReportType.GENERIC: GenericParser,
}


def get_parser(report_type: ReportType, canal: str) -> ReportParser:
    """Instantiate the parser for a layout; unknown layouts use the generic one."""
    parser_cls = PARSERS.get(report_type, GenericParser)
    return parser_cls(canal)
