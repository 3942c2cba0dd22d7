"""Template rendering for email notifications using Jinja2.

Each email kind is a triple of templates in ``email_templates``:
``<name>_subject.j2``, ``<name>_body.html.j2`` and ``<name>_body.txt.j2``.
"""

import logging
from typing import Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, select_autoescape

from .models import NotificationTemplateError

logger = logging.getLogger(__name__)

MATCH_CONFIRMATION = "match_confirmation"
EMERGENCY_CONTACT_ALERT = "emergency_contact_alert"
ADMIN_EMERGENCY_ALERT = "admin_emergency_alert"
COUNTERPART_EMERGENCY_ALERT = "counterpart_emergency_alert"


class TemplateRenderer:
    """Renders email templates from the app.notifications.email_templates package.

    The Jinja2 environment caches compiled templates, so one renderer can be
    shared by every channel worker.
    """

    def __init__(self, template_dir: str = "email_templates"):
        """Initialize template renderer with Jinja2 environment.

        Args:
            template_dir: Directory name within app.notifications package
        """
        self.env = Environment(
            loader=PackageLoader("app.notifications", template_dir),
            # Only the HTML bodies are escaped; subjects and text bodies stay literal
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
            undefined=StrictUndefined,
        )
        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(self, name: str, context: Dict) -> Dict[str, str]:
        """Render the subject and both bodies of email ``name``.

        Args:
            name: Template base name, e.g. "match_confirmation"
            context: Dictionary of template variables

        Returns:
            Dictionary with ``subject`` (single line), ``html_body`` and ``text_body``

        Raises:
            NotificationTemplateError: If a template is missing or rendering fails
        """
        try:
            subject = self.env.get_template(f"{name}_subject.j2").render(context)
            html_body = self.env.get_template(f"{name}_body.html.j2").render(context)
            text_body = self.env.get_template(f"{name}_body.txt.j2").render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for {name}: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

        return {
            "subject": " ".join(subject.split()),
            "html_body": html_body,
            "text_body": text_body,
        }
