"""
Tests for sales channel normalisation and report layout detection.
"""

from ecom_finance.models.enums import ReportType
from ecom_finance.pipeline.channel_detector import channel_for_report, detect_report_type, normalize_channel


class TestNormalizeChannel:

    def test_free_form_names(self):
        assert normalize_channel("Mercado Livre") == "mercado_livre"
        assert normalize_channel("MercadoPago") == "mercado_pago"
        assert normalize_channel("Loja Shopee") == "shopee"
        assert normalize_channel("TikTok Shop") == "tiktok_shop"
        assert normalize_channel("Magazine Luiza") == "magalu"

    def test_mercado_pago_wins_over_mercado_prefix(self):
        assert normalize_channel("mercado pago") == "mercado_pago"

    def test_internal_code_passes_through(self):
        assert normalize_channel("shein") == "shein"

    def test_unknown(self):
        assert normalize_channel("Loja física") == "outro"
        assert normalize_channel(None) == "outro"
        assert normalize_channel("") == "outro"


class TestDetectReportType:

    def test_filename_wins(self):
        result = detect_report_type("relatorio_shopee_marco.xlsx", ["Data", "Valor"])
        assert result.report_type == ReportType.SHOPEE
        assert result.confidence == 0.9

    def test_header_signatures(self):
        headers = ["Data da tarifa", "Tipo de tarifa", "Número da venda", "Valor líquido"]
        result = detect_report_type("report.csv", headers)
        assert result.report_type == ReportType.MERCADO_LIVRE
        assert len(result.signals) == 3

    def test_mercado_pago_headers(self):
        headers = ["date_created", "operation_type", "transaction_amount", "net_received_amount"]
        assert detect_report_type("export.csv", headers).report_type == ReportType.MERCADO_PAGO

    def test_declared_channel_fallback(self):
        result = detect_report_type("export.csv", ["Data", "Valor"], "Shopee")
        assert result.report_type == ReportType.SHOPEE
        assert result.confidence == 0.5

    def test_generic(self):
        result = detect_report_type("export.csv", ["Data", "Valor"], "Amazon")
        assert result.report_type == ReportType.GENERIC
        assert channel_for_report(result.report_type, "Amazon") == "amazon"

    def test_channel_for_known_layout(self):
        assert channel_for_report(ReportType.MERCADO_LIVRE, "qualquer") == "mercado_livre"
