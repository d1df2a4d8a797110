"""
Tests for lead-data variable substitution and the ticket seed message.
"""

from chatfunnel.engine.variables import (
    LAST_RESPONSE_KEY,
    build_variable_map,
    format_ticket_message,
    merge_last_response,
    substitute_variables,
)


class TestSubstitution:

    def test_alias_resolves_from_raw_field(self):
        assert substitute_variables("Olá {{customer_name}}!", {"nome": "Ana"}) == "Olá Ana!"

    def test_unknown_identifier_left_verbatim(self):
        assert substitute_variables("{{unknown_field}}", {"nome": "Ana"}) == "{{unknown_field}}"

    def test_no_lead_data_returns_text_unchanged(self):
        assert substitute_variables("Olá {{customer_name}}", None) == "Olá {{customer_name}}"
        assert substitute_variables("Olá {{customer_name}}", {}) == "Olá {{customer_name}}"

    def test_empty_text(self):
        assert substitute_variables("", {"nome": "Ana"}) == ""

    def test_whitespace_inside_braces_is_ignored(self):
        assert substitute_variables("{{ nome }}", {"nome": "Ana"}) == "Ana"

    def test_values_are_stringified(self):
        assert substitute_variables("{{valor}} MZN", {"valor_solicitado": 5000}) == "5000 MZN"

    def test_none_value_left_verbatim(self):
        assert substitute_variables("{{prazo}}", {"prazo": None, "nome": "Ana"}) == "{{prazo}}"

    def test_substituted_values_not_rescanned(self):
        result = substitute_variables("{{nome}}", {"nome": "{{email}}", "email": "a@b.co"})
        assert result == "{{email}}"

    def test_alias_precedence(self):
        data = {"telefone": "841111111", "contacto": "842222222"}
        assert substitute_variables("{{customer_phone}}", data) == "842222222"

    def test_order_number_prefers_ticket_code(self):
        data = {"ticket_code": "TKT-1", "order_number": "42"}
        assert substitute_variables("{{order_number}}", data) == "TKT-1"

    def test_raw_key_wins_over_alias(self):
        variables = build_variable_map({"customer_name": "Raw", "nome": "Ana"})
        assert variables["customer_name"] == "Raw"

    def test_alias_with_no_source_substitutes_empty(self):
        assert substitute_variables("[{{customer_email}}]", {"nome": "Ana"}) == "[]"


class TestTicketMessage:

    def test_groups_known_fields(self):
        message = format_ticket_message("TKT-ABC", {
            "nome": "Ana",
            "contacto": "841234567",
            "valor": "5000",
            "provincia": "Maputo",
        })
        assert message.startswith("Olá! Vim através do formulário de empréstimo.")
        assert "📋 Pedido: TKT-ABC" in message
        assert "👤 Meus dados:\n• Nome: Ana\n• Contacto: 841234567" in message
        assert "💰 Sobre o empréstimo:\n• Valor Solicitado: 5000" in message
        assert "📍 Localização:\n• Província: Maputo" in message
        assert "💼 Trabalho" not in message

    def test_unknown_fields_listed_last(self):
        message = format_ticket_message("TKT-ABC", {"nome": "Ana", "origem": "facebook"})
        assert message.endswith("📝 Outras informações:\n• origem: facebook")

    def test_empty_fields_skipped(self):
        message = format_ticket_message("TKT-ABC", {"nome": "", "email": "ana@example.com"})
        assert "Nome" not in message
        assert "• Email: ana@example.com" in message


class TestLastResponse:

    def test_merge_keeps_other_keys(self):
        merged = merge_last_response({"nome": "Ana"}, "Sim")
        assert merged == {"nome": "Ana", LAST_RESPONSE_KEY: "Sim"}

    def test_merge_overwrites_previous_reply(self):
        merged = merge_last_response({LAST_RESPONSE_KEY: "Sim"}, "Não")
        assert merged[LAST_RESPONSE_KEY] == "Não"

    def test_merge_does_not_mutate_input(self):
        original = {"nome": "Ana"}
        merge_last_response(original, "Sim")
        assert original == {"nome": "Ana"}

    def test_merge_from_nothing(self):
        assert merge_last_response(None, "Sim") == {LAST_RESPONSE_KEY: "Sim"}
