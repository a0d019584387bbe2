"""Template rendering for the write path.

Rendering happens once, before an entry is queued, so that dispatch never
fails on a template problem. Unbound placeholders are reported up front as
MissingVariables rather than rendered as empty strings.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from jinja2 import StrictUndefined, TemplateSyntaxError, meta
from jinja2.sandbox import SandboxedEnvironment
from protean.exceptions import ValidationError

from outbox.errors import MissingVariables

logger = structlog.get_logger(__name__)

# Supplied by the renderer itself; callers need not pass them
SYSTEM_VARIABLES = ("current_date", "current_time", "current_year")


@dataclass(frozen=True)
class NotificationTemplate:
    """Source templates for one notification. ``channel`` may be ``both``."""

    name: str
    text: str
    subject: str | None = None
    html: str | None = None
    channel: str = "both"
    version: int = 1

    def supports(self, channel: str) -> bool:
        return self.channel in ("both", channel)


class TemplateRenderer(ABC):
    @abstractmethod
    def render(self, template: NotificationTemplate, variables: dict[str, Any]) -> dict:
        """Return ``{"subject", "html", "text"}``; absent parts are None."""
        ...


class JinjaTemplateRenderer(TemplateRenderer):
    """Sandboxed Jinja2 renderer with a per-version compile cache."""

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._compiled: dict[tuple[str, int], dict] = {}

    def required_variables(self, template: NotificationTemplate) -> set[str]:
        names: set[str] = set()
        for source in (template.subject, template.html, template.text):
            if source:
                names |= meta.find_undeclared_variables(self._env.parse(source))
        return names - set(SYSTEM_VARIABLES)

    def render(self, template: NotificationTemplate, variables: dict[str, Any]) -> dict:
        try:
            missing = self.required_variables(template) - set(variables)
        except TemplateSyntaxError as exc:
            raise ValidationError({"template": [f"Syntax error in template {template.name}: {exc}"]}) from exc
        if missing:
            raise MissingVariables(sorted(missing), template_name=template.name)

        now = datetime.now(UTC)
        context = {
            **variables,
            "current_date": now.date().isoformat(),
            "current_time": now.strftime("%H:%M:%S"),
            "current_year": now.year,
        }

        compiled = self._compile(template)
        rendered = {part: (tmpl.render(context) if tmpl is not None else None) for part, tmpl in compiled.items()}

        logger.debug("Template rendered", template=template.name, variables=sorted(variables))
        return rendered

    def _compile(self, template: NotificationTemplate) -> dict:
        key = (template.name, template.version)
        if key not in self._compiled:
            self._compiled[key] = {
                "subject": self._env.from_string(template.subject) if template.subject else None,
                "html": self._env.from_string(_escaped(template.html)) if template.html else None,
                "text": self._env.from_string(template.text),
            }
        return self._compiled[key]


def _escaped(source: str) -> str:
    """Wrap an HTML template so every substituted value is escaped."""
    return "{% autoescape true %}" + source + "{% endautoescape %}"
