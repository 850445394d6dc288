"""
test_employee_records.py — field maps, CSV import/export and record cleanup.
"""

import csv
import io
from datetime import date, datetime, timezone

import pytest

from employee_records import (
    Affiliate,
    build_field_map,
    drop_nameless,
    export_employees_csv,
    format_currency_br,
    format_date_br,
    load_affiliate,
    load_csv_row,
    load_employees_csv,
    merge_csv_and_fixed_values,
    remove_duplicates,
)
from template_resolver import resolve


class TestFormatting:
    def test_dates(self):
        assert format_date_br("2024-02-29") == "29/02/2024"
        assert format_date_br("2024-02-29T13:00:00Z") == "29/02/2024"
        assert format_date_br(date(2023, 1, 5)) == "05/01/2023"
        assert format_date_br("05/01/2023") == "05/01/2023"
        assert format_date_br(None) == ""

    def test_currency(self):
        assert format_currency_br(1234.5) == "R$ 1.234,50"
        assert format_currency_br("1500000") == "R$ 1.500.000,00"
        assert format_currency_br("a combinar") == "a combinar"
        assert format_currency_br("") == ""


class TestBuildFieldMap:
    EMPLOYEE = {
        "name": "Maria Souza",
        "position": "Analista",
        "store_name": "Loja Centro",
        "cpf": "123.456.789-00",
        "hire_date": "2021-06-01",
        "salary": "3200",
        "custom_field": "extra",
    }

    def test_aliases(self):
        fields = build_field_map(self.EMPLOYEE)
        assert fields["nome"] == fields["nome_colaborador"] == "Maria Souza"
        assert fields["cargo"] == fields["funcao"] == "Analista"
        assert fields["loja"] == "Loja Centro"
        assert fields["data_admissao"] == "01/06/2021"
        assert fields["salario"] == "R$ 3.200,00"

    def test_raw_attributes_are_kept(self):
        fields = build_field_map(self.EMPLOYEE)
        assert fields["custom_field"] == "extra"
        assert fields["name"] == "Maria Souza"

    def test_absent_attributes_do_not_clobber_template_keys(self):
        fields = build_field_map({"Nome": "Carlos", "Cargo": "Gerente"})
        assert fields["nome"] == "Carlos"
        assert fields["cargo"] == "Gerente"

    def test_feeds_the_resolver(self):
        text = resolve("{{nome}}, {{cargo}}, desde {{data_admissao}}. RG: {{rg}}", build_field_map(self.EMPLOYEE))
        assert text == "Maria Souza, Analista, desde 01/06/2021. RG: "


class TestCsvImport:
    @pytest.fixture
    def csv_path(self, tmp_path):
        path = tmp_path / "funcionarios.csv"
        path.write_text(
            "\ufeffNome Completo,Cargo,CPF\n"
            "Ana Lima,Vendedora,111\n"
            "Bruno Reis,,222\n",
            encoding="utf-8",
        )
        return path

    def test_bom_is_stripped(self, csv_path):
        rows = load_employees_csv(csv_path)
        assert list(rows[0]) == ["Nome Completo", "Cargo", "CPF"]

    def test_empty_csv(self, tmp_path):
        path = tmp_path / "vazio.csv"
        path.write_text("Nome,Cargo\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_employees_csv(path)

    def test_row_out_of_range(self, csv_path):
        with pytest.raises(IndexError):
            load_csv_row(csv_path, 5)

    def test_merge_without_mappings_normalizes_headers(self, csv_path):
        record = merge_csv_and_fixed_values(load_csv_row(csv_path, 0), None, None)
        assert record == {"nome_completo": "Ana Lima", "cargo": "Vendedora", "cpf": "111"}

    def test_merge_with_mappings_and_fixed_values(self, csv_path):
        mappings = {"name": "Nome Completo", "position": "Cargo"}
        fixed = {"position": "Estagiário", "company": "Grupo Exemplo"}
        record = merge_csv_and_fixed_values(load_csv_row(csv_path, 1), mappings, fixed)
        assert record == {"name": "Bruno Reis", "position": "Estagiário", "company": "Grupo Exemplo"}


class TestCleanup:
    def test_remove_duplicates_keeps_oldest(self):
        employees = [
            {"name": "A", "cpf": "111", "created_at": "2024-03-01"},
            {"name": "B", "cpf": "222", "created_at": "2024-01-01"},
            {"name": "A (antigo)", "cpf": " 111 ", "created_at": "2023-12-01"},
            {"name": "Sem CPF", "cpf": ""},
            {"name": "Sem CPF 2"},
        ]
        kept, removed = remove_duplicates(employees)
        assert [e["name"] for e in kept] == ["B", "A (antigo)", "Sem CPF", "Sem CPF 2"]
        assert [e["name"] for e in removed] == ["A"]

    def test_remove_duplicates_compares_instants_across_offsets(self):
        newer = {"name": "B", "cpf": "111", "created_at": "2024-01-01T08:00:00Z"}
        older = {"name": "A", "cpf": "111", "created_at": "2024-01-01T10:00:00+03:00"}
        kept, removed = remove_duplicates([newer, older])
        assert [e["name"] for e in kept] == ["A"]
        assert [e["name"] for e in removed] == ["B"]

    def test_remove_duplicates_mixes_datetimes_and_strings(self):
        employees = [
            {"name": "texto", "cpf": "1", "created_at": "2024-05-01T12:00:00-03:00"},
            {"name": "objeto", "cpf": "1", "created_at": datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)},
            {"name": "invalido", "cpf": "1", "created_at": "ontem"},
        ]
        kept, removed = remove_duplicates(employees)
        assert [e["name"] for e in kept] == ["objeto"]
        assert [e["name"] for e in removed] == ["texto", "invalido"]

    def test_drop_nameless(self):
        employees = [{"name": "Ana"}, {"name": "  "}, {"cpf": "1"}]
        assert drop_nameless(employees) == [{"name": "Ana"}]


class TestExport:
    def test_export_has_bom_and_labels(self):
        text = export_employees_csv([{"name": "Ana", "cpf": "111", "rg": None}])
        assert text.startswith("\ufeff")
        rows = list(csv.reader(io.StringIO(text[1:])))
        assert rows[0][:3] == ["Nome", "CPF", "RG"]
        assert rows[1][:3] == ["Ana", "111", ""]

    def test_custom_columns(self):
        text = export_employees_csv([{"name": "Ana, Maria"}], columns=[("name", "Nome")])
        assert text == '\ufeffNome\n"Ana, Maria"\n'


class TestAffiliate:
    def test_from_portuguese_record(self):
        affiliate = Affiliate.from_record({
            "nome": "Filial Sul",
            "endereco": "Rua A, 10",
            "company_logo_url": "https://x/logo.png",
            "stamp_url": "",
        })
        assert affiliate == Affiliate(name="Filial Sul", address="Rua A, 10", logo_url="https://x/logo.png")

    def test_load_affiliate(self, tmp_path):
        path = tmp_path / "coligada.json"
        path.write_text('{"name": "Matriz", "signature_url": "https://x/ass.png"}', encoding="utf-8")
        affiliate = load_affiliate(path)
        assert affiliate.name == "Matriz"
        assert affiliate.signature_url == "https://x/ass.png"
        assert affiliate.address is None
