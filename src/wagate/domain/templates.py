"""Template placeholder handling and template cache refresh.

Templates use positional ({{1}}, {{2}}) or named ({{first_name}})
placeholders in their header and body. A send must supply exactly one
value per distinct placeholder: no more, no less.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from wagate.domain.models import Account, Template
from wagate.errors import MissingVariable
from wagate.infra.db import txn
from wagate.infra.repositories.templates_repository import upsert_template
from wagate.observability.logging import get_logger
from wagate.observability.redaction import safe_log_context
from wagate.whatsapp import meta_sender

logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

# Sections that accept parameters, in provider component order
_PARAMETER_SECTIONS = ("header", "body")


def extract_placeholders(text: str | None) -> list[str]:
    """Distinct placeholder names in order of first appearance."""
    if not text:
        return []
    seen: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        name = match.group(1)
        if name not in seen:
            seen.append(name)
    return seen


def _ordered(names: list[str]) -> list[str]:
    """Positional placeholders sort numerically; named ones keep text order."""
    positional = sorted((n for n in names if n.isdigit()), key=int)
    named = [n for n in names if not n.isdigit()]
    return positional + named


def _section_text(template: Template, section: str) -> str | None:
    return getattr(template, f"{section}_text")


def template_placeholders(template: Template) -> set[str]:
    names: set[str] = set()
    for section in _PARAMETER_SECTIONS:
        names.update(extract_placeholders(_section_text(template, section)))
    return names


def normalize_variables(variables: Mapping[Any, Any] | None) -> dict[str, str]:
    """Stringify keys and values ({1: "Alice"} -> {"1": "Alice"})."""
    return {str(k).strip(): "" if v is None else str(v) for k, v in (variables or {}).items()}


def validate_variables(template: Template, variables: Mapping[str, str]) -> None:
    """Require an exact 1:1 match between placeholders and variable keys.

    Raises:
        MissingVariable: Listing missing and unexpected keys.
    """
    expected = template_placeholders(template)
    provided = set(variables)
    missing = _ordered(sorted(expected - provided))
    unexpected = _ordered(sorted(provided - expected))
    if missing or unexpected:
        raise MissingVariable(missing=missing, unexpected=unexpected)


def build_components(template: Template, variables: Mapping[str, str]) -> list[dict[str, Any]]:
    """Provider ``components`` for a validated variable set."""
    components: list[dict[str, Any]] = []
    for section in _PARAMETER_SECTIONS:
        names = _ordered(extract_placeholders(_section_text(template, section)))
        if not names:
            continue
        parameters = []
        for name in names:
            parameter: dict[str, Any] = {"type": "text", "text": variables[name]}
            if not name.isdigit():
                parameter["parameter_name"] = name
            parameters.append(parameter)
        components.append({"type": section, "parameters": parameters})
    return components


def render_text(text: str | None, variables: Mapping[str, str]) -> str | None:
    if text is None:
        return None
    return PLACEHOLDER_PATTERN.sub(lambda m: variables.get(m.group(1), m.group(0)), text)


def render_template(template: Template, variables: Mapping[str, str]) -> str:
    """Stored content of a template send: header, body and footer lines."""
    parts = [
        render_text(template.header_text, variables),
        render_text(template.body_text, variables),
        template.footer_text,
    ]
    return "\n".join(part for part in parts if part)


def template_from_provider(account_id: str, item: dict[str, Any]) -> Template | None:
    """Map a Graph API template listing item. None if it lacks identity fields."""
    name = item.get("name")
    language = item.get("language")
    status = item.get("status")
    if not isinstance(name, str) or not isinstance(language, str) or not isinstance(status, str):
        return None

    texts: dict[str, str | None] = {"header": None, "body": None, "footer": None}
    components = item.get("components")
    if isinstance(components, list):
        for component in components:
            if not isinstance(component, dict):
                continue
            section = str(component.get("type", "")).lower()
            if section not in texts:
                continue
            # Media headers carry no text
            if section == "header" and component.get("format", "TEXT") != "TEXT":
                continue
            text = component.get("text")
            if isinstance(text, str):
                texts[section] = text

    category = item.get("category")
    return Template(
        account_id=account_id,
        name=name,
        language=language,
        status=status.upper(),
        category=category if isinstance(category, str) else None,
        header_text=texts["header"],
        body_text=texts["body"],
        footer_text=texts["footer"],
    )


def sync_templates(account: Account, correlation_id: str | None = None) -> int:
    """Refresh the account's template cache from the provider.

    Returns:
        Number of templates stored.
    """
    items = meta_sender.fetch_templates(account=account, correlation_id=correlation_id)
    templates = [t for t in (template_from_provider(account.id, item) for item in items) if t]

    with txn() as cur:
        for template in templates:
            upsert_template(cur, template)

    logger.info(
        "templates synced",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id or "",
                account_id=account.id,
                fetched=len(items),
                stored=len(templates),
            )
        },
    )
    return len(templates)
