"""
Mailgun email transport and Jinja2 rendering for order lifecycle emails
"""
import aiohttp
import asyncio
import os
from typing import Any, Dict, Optional, Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape, TemplateError

from core.exceptions import NotificationDeliveryException
from core.logging import get_structured_logger
from core.utils.money import format_money
from core.utils.uuid_utils import uuid7_str

logger = get_structured_logger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATES_DIR = os.path.join(BASE_DIR, "templates")

env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(['html', 'xml'])
)
env.filters["money"] = format_money


def render_email(template_name: str, context: Dict[str, Any]) -> str:
    """Render Jinja2 template with context"""
    try:
        template = env.get_template(template_name)
        return template.render(**context)
    except TemplateError as e:
        logger.error(
            message="Template rendering error",
            metadata={"template": template_name},
            exception=e,
        )
        raise


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, html: str) -> str:
        ...


class MailgunEmailSender:
    """
    `send(to, subject, html) -> message id` over the Mailgun HTTP API.

    Without credentials outside production the send is skipped and logged,
    returning a synthetic id, so local checkouts never fail on email.
    """

    def __init__(
        self,
        api_key: str,
        domain: str,
        from_email: str,
        is_production: bool = False,
        timeout_seconds: float = 30,
        base_url: str = "https://api.mailgun.net/v3",
    ):
        self.api_key = api_key
        self.domain = domain
        self.from_email = from_email
        self.is_production = is_production
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.base_url = base_url

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.domain)

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        if not self.configured:
            if self.is_production:
                raise NotificationDeliveryException("Mailgun credentials are not configured")
            message_id = f"dev-{uuid7_str()}"
            logger.info(
                message="Email transport not configured; skipping send",
                metadata={"to": to, "subject": subject, "message_id": message_id},
            )
            return message_id

        data = {
            "from": self.from_email,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            data["text"] = text

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.base_url}/{self.domain}/messages",
                    auth=aiohttp.BasicAuth("api", self.api_key),
                    data=data,
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise NotificationDeliveryException(
                            f"Mailgun API error ({response.status}): {error_text[:200]}")
                    result = await response.json()
        except asyncio.TimeoutError as e:
            raise NotificationDeliveryException("Mailgun request timed out") from e
        except aiohttp.ClientError as e:
            raise NotificationDeliveryException(f"Mailgun request failed: {e}") from e

        return result.get("id", "")
