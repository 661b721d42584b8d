import base64
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from formrelayapi.config import config
from formrelayapi.i18n import get_translation, resolve_language
from formrelayapi.models.form import FieldValue, FileValue, UploadedFileMeta

logger = logging.getLogger(__name__)

_templates_dir = os.path.join(os.path.dirname(__file__), "templates")
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)


class EmailDeliveryError(Exception):
    pass


def format_submitted_at(submitted_at: datetime, language: str) -> str:
    if language == "zh-CN":
        return submitted_at.strftime("%Y/%m/%d %H:%M:%S")
    return submitted_at.strftime("%m/%d/%Y, %I:%M:%S %p")


def render_submission_email(
    form_title: str,
    form_description: Optional[str],
    values: Dict[str, FieldValue],
    submitted_at: datetime,
    language: str = "zh-CN",
    file_metadata: Optional[Dict[str, List[UploadedFileMeta]]] = None,
) -> str:
    language = resolve_language(language)
    t = get_translation(language)
    file_metadata = file_metadata or {}

    rows = [
        {
            "label": value.field.label,
            "required": value.field.required,
            "highlight": value.field.required and value.is_missing(),
            "value": value.display(t, file_metadata),
        }
        for value in values.values()
    ]
    has_attachments = any(
        isinstance(value, FileValue) and value.paths for value in values.values()
    )

    return _jinja_env.get_template("submission_email.html").render(
        t=t,
        form_title=form_title,
        form_description=form_description,
        submitted_at=format_submitted_at(submitted_at, language),
        has_attachments=has_attachments,
        rows=rows,
    )


async def send_email(
    to: str,
    subject: str,
    html: str,
    from_name: str,
    attachments: Optional[List[dict]] = None,
) -> str:
    """Send through the email API; returns the provider message id."""
    if not config.RESEND_API_KEY:
        raise EmailDeliveryError("RESEND_API_KEY is not configured")

    payload = {
        "from": f"{from_name} <{config.EMAIL_FROM_ADDRESS}>",
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if attachments:
        payload["attachments"] = [
            {
                "filename": a["filename"],
                "content": base64.b64encode(a["content"]).decode("ascii"),
            }
            for a in attachments
        ]

    try:
        async with httpx.AsyncClient(timeout=30) as client:
            r = await client.post(
                config.RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {config.RESEND_API_KEY}"},
            )
    except httpx.HTTPError as e:
        raise EmailDeliveryError(f"Email API request failed: {e}") from e

    if r.status_code >= 400:
        raise EmailDeliveryError(f"Email API returned {r.status_code}: {r.text[:200]}")
    return r.json().get("id", "")
