from __future__ import annotations

import pytest

from faturador.utils.validators import (
    validate_artifact_format,
    validate_date,
    validate_monetary,
    validate_percent,
    validate_service_code,
    validate_tax_id,
)


class TestValidateMonetary:
    def test_normalizes(self):
        assert validate_monetary("1000") == "1000.00"
        assert validate_monetary(" 12.5 ") == "12.50"

    @pytest.mark.parametrize("value", ["0", "-1", "0.00"])
    def test_non_positive(self, value):
        with pytest.raises(ValueError, match="positivo"):
            validate_monetary(value)

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="invalido"):
            validate_monetary(value)


class TestValidateDate:
    def test_valid(self):
        assert validate_date("2025-12-31") == "2025-12-31"

    def test_invalid(self):
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            validate_date("31/12/2025")


class TestValidatePercent:
    def test_valid(self):
        assert validate_percent("5") == "5.00"
        assert validate_percent("0") == "0.00"
        assert validate_percent("100") == "100.00"

    def test_out_of_range(self):
        with pytest.raises(ValueError, match="entre"):
            validate_percent("100.01")
        with pytest.raises(ValueError):
            validate_percent("-1")

    def test_not_numeric(self):
        with pytest.raises(ValueError, match="invalido"):
            validate_percent("cinco")


class TestValidateTaxId:
    def test_cpf(self):
        assert validate_tax_id("123.456.789-09") == "12345678909"

    def test_cnpj(self):
        assert validate_tax_id("12.345.678/0001-90") == "12345678000190"

    def test_wrong_length(self):
        with pytest.raises(ValueError, match="CPF/CNPJ"):
            validate_tax_id("1234")


class TestValidateServiceCode:
    @pytest.mark.parametrize("code", ["1.01", "17.02", " 8.02 "])
    def test_valid(self, code):
        assert validate_service_code(code) == code.strip()

    @pytest.mark.parametrize("code", ["101", "1.1", "abc", "100.01"])
    def test_invalid(self, code):
        with pytest.raises(ValueError):
            validate_service_code(code)


class TestValidateArtifactFormat:
    def test_case_insensitive(self):
        assert validate_artifact_format("PDF") == "pdf"
        assert validate_artifact_format("xml") == "xml"

    def test_unknown(self):
        with pytest.raises(ValueError, match="pdf"):
            validate_artifact_format("docx")
