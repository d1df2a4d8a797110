import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

# Well-known variables and the raw lead fields they read, in precedence order
VARIABLE_ALIASES: Dict[str, Tuple[str, ...]] = {
    "customer_name": ("nome", "name"),
    "customer_email": ("email",),
    "customer_phone": ("contacto", "telefone", "phone"),
    "order_number": ("ticket_code", "order_number"),
    "valor": ("valor_solicitado", "valor"),
    "valor_emprestimo": ("valor_solicitado", "valor"),
}

LAST_RESPONSE_KEY = "lastResponse"


def _first_filled(lead_data: Mapping[str, Any], fields: Tuple[str, ...]) -> Any:
    for field in fields:
        value = lead_data.get(field)
        if value not in (None, ""):
            return value
    return ""


def build_variable_map(lead_data: Mapping[str, Any]) -> Dict[str, Any]:
    variables = {name: _first_filled(lead_data, fields) for name, fields in VARIABLE_ALIASES.items()}
    # Raw keys win over an alias with the same name
    variables.update(lead_data)
    return variables


def substitute_variables(text: str, lead_data: Optional[Mapping[str, Any]]) -> str:
    """
    Replace every {{identifier}} in text with its value from the lead data.

    Unknown identifiers stay in place, braces included, so a typo in a script
    is visible in the chat. Substituted values are not scanned again.
    """
    if not text or not lead_data:
        return text

    variables = build_variable_map(lead_data)

    def replace(match: re.Match) -> str:
        name = match.group(1).strip()
        value = variables.get(name)
        if value is None:
            return match.group(0)
        return str(value)

    return VARIABLE_PATTERN.sub(replace, text)


FIELD_LABELS = {
    "nome": "Nome",
    "name": "Nome",
    "contacto": "Contacto",
    "telefone": "Contacto",
    "phone": "Contacto",
    "valor": "Valor Solicitado",
    "valor_solicitado": "Valor Solicitado",
    "prazo": "Prazo de Pagamento",
    "motivo": "Motivo",
    "finalidade": "Finalidade",
    "provincia": "Província",
    "bairro": "Bairro",
    "quarteirao": "Quarteirão",
    "numero_casa": "Nº Casa",
    "sector_trabalho": "Sector de Trabalho",
    "taxa_inscricao": "Taxa de Inscrição",
    "juros_mensais": "Juros Mensais",
    "parcela_estimada": "Parcela Estimada",
    "forma_pagamento": "Forma de Pagamento",
    "email": "Email",
}

TICKET_MESSAGE_SECTIONS: List[Tuple[str, Tuple[str, ...]]] = [
    ("👤 Meus dados:", ("nome", "name", "contacto", "telefone", "phone", "email")),
    (
        "💰 Sobre o empréstimo:",
        (
            "valor",
            "valor_solicitado",
            "prazo",
            "motivo",
            "finalidade",
            "taxa_inscricao",
            "juros_mensais",
            "parcela_estimada",
            "forma_pagamento",
        ),
    ),
    ("📍 Localização:", ("provincia", "bairro", "quarteirao", "numero_casa")),
    ("💼 Trabalho:", ("sector_trabalho",)),
]


def format_ticket_message(ticket_code: str, lead_data: Mapping[str, Any]) -> str:
    """First user message of a seeded session: the captured form, grouped by topic."""
    message = "Olá! Vim através do formulário de empréstimo.\n\n"
    message += f"📋 Pedido: {ticket_code}\n\n"

    for title, fields in TICKET_MESSAGE_SECTIONS:
        lines = [
            f"• {FIELD_LABELS.get(field, field)}: {lead_data[field]}"
            for field in fields
            if lead_data.get(field)
        ]
        if lines:
            message += f"{title}\n" + "\n".join(lines) + "\n\n"

    known_fields = {field for _, fields in TICKET_MESSAGE_SECTIONS for field in fields}
    additional = [(key, value) for key, value in lead_data.items() if key not in known_fields]
    if additional:
        message += "📝 Outras informações:\n"
        for key, value in additional:
            message += f"• {FIELD_LABELS.get(key.lower(), key)}: {value}\n"

    return message.strip()


def merge_last_response(lead_data: Optional[Mapping[str, Any]], response: str) -> Dict[str, Any]:
    """Copy of lead_data with the latest raw reply recorded; other keys are kept."""
    merged = dict(lead_data or {})
    merged[LAST_RESPONSE_KEY] = response
    return merged
