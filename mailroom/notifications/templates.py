"""Template resolution for notification emails using Jinja2.

Each notification type owns up to three templates in the
``mailroom.notifications.email_templates`` package:

- ``<type>_subject.j2`` (required)
- ``<type>.html.j2`` (optional)
- ``<type>.txt.j2`` (optional)

At least one body template must exist. Types without a subject template
(bulk announcements) can only be sent with explicit content.
"""

import logging
from typing import Any, Dict, Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError, TemplateNotFound

from mailroom.domain.models import NotificationType

from .models import ContentResolutionError, RenderedContent

logger = logging.getLogger(__name__)


class TemplateResolver:
    """Resolves (notification type, payload) into subject and bodies.

    Templates are cached by the Jinja2 environment for reuse across
    invocations. Undefined variables raise so that a payload missing a
    required key fails loudly rather than rendering blanks.
    """

    def __init__(
        self,
        app_url: str = "https://ridesharetahoe.com",
        template_dir: str = "email_templates",
        environment: Optional[Environment] = None,
    ):
        """Initialize template resolver with a Jinja2 environment.

        Args:
            app_url: Base URL exposed to every template as ``app_url``
            template_dir: Directory name within mailroom.notifications package
            environment: Pre-built environment (tests use a DictLoader)
        """
        self.app_url = app_url.rstrip("/")
        self.env = environment or Environment(
            loader=PackageLoader("mailroom.notifications", template_dir),
            autoescape=lambda name: bool(name) and name.endswith(".html.j2"),
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )

    def resolve(self, notification_type: NotificationType, payload: Dict[str, Any]) -> RenderedContent:
        """Render the templates for ``notification_type``.

        Args:
            notification_type: Notification category to render
            payload: Template variables

        Returns:
            RenderedContent with subject and whichever bodies have templates

        Raises:
            ContentResolutionError: If the type has no templates or rendering fails
        """
        type_name = NotificationType(notification_type).value
        context = {"app_url": self.app_url, **(payload or {})}

        try:
            subject_template = self.env.get_template(f"{type_name}_subject.j2")
        except TemplateNotFound as e:
            raise ContentResolutionError(
                f"No template registered for notification type: {type_name}"
            ) from e

        try:
            subject = subject_template.render(context).strip().replace("\n", " ")
            html_body = self._render_optional(f"{type_name}.html.j2", context)
            text_body = self._render_optional(f"{type_name}.txt.j2", context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for {type_name}: {e}"
            logger.error(error_msg, exc_info=True)
            raise ContentResolutionError(error_msg) from e

        if html_body is None and text_body is None:
            raise ContentResolutionError(f"No body template found for notification type: {type_name}")

        logger.debug(f"Rendered templates for notification type: {type_name}")
        return RenderedContent(subject=subject, html=html_body, text=text_body)

    def _render_optional(self, name: str, context: Dict[str, Any]) -> Optional[str]:
        try:
            template = self.env.get_template(name)
        except TemplateNotFound:
            return None
        return template.render(context)
