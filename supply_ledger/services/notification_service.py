import json
import logging
import re
from typing import Optional
from urllib import error, request
from urllib.parse import urlparse

from supply_ledger.config import Settings, get_settings

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D+")
_ALLOWED_HTTP_SCHEMES = {"http", "https"}
_REQUEST_TIMEOUT_SECONDS = 15


def build_payload(api_url: str, message: str, phone: str) -> dict:
    if "graph.facebook.com" in api_url.lower():
        digits = _NON_DIGIT_RE.sub("", phone)
        if not digits:
            raise ValueError("phone is required")
        return {
            "messaging_product": "whatsapp",
            "to": digits,
            "type": "text",
            "text": {"body": message},
        }
    return {"to": phone, "message": message}


def validate_api_url(api_url: str) -> str:
    parsed = urlparse(api_url)
    if parsed.scheme.lower() not in _ALLOWED_HTTP_SCHEMES or not parsed.netloc:
        raise RuntimeError("WHATSAPP_API_URL must be an absolute HTTP(S) URL")
    return api_url


def _raise_http_error(exc: error.HTTPError):
    body = ""
    try:
        raw = exc.read()
        if raw:
            body = raw.decode("utf-8", errors="replace").strip()
    except (OSError, ValueError):
        body = ""
    if body:
        raise RuntimeError("WhatsApp API error: HTTP {} {}".format(exc.code, body)) from exc
    raise RuntimeError("WhatsApp API error: HTTP {}".format(exc.code)) from exc


def send_whatsapp(message, phone, settings: Optional[Settings] = None) -> None:
    """Deliver one text message; raises ``RuntimeError``/``ValueError`` on any failure."""
    settings = settings or get_settings()

    api_url = (settings.WHATSAPP_API_URL or "").strip()
    access_token = (settings.WHATSAPP_ACCESS_TOKEN or "").strip()
    if not api_url:
        raise RuntimeError("WHATSAPP_API_URL is not configured")
    if not access_token:
        raise RuntimeError("WHATSAPP_ACCESS_TOKEN is not configured")
    api_url = validate_api_url(api_url)

    message = str(message).strip() if message is not None else ""
    phone = str(phone).strip() if phone is not None else ""
    if not message:
        raise ValueError("message is required")
    if not phone:
        raise ValueError("phone is required")

    payload = json.dumps(build_payload(api_url, message, phone)).encode("utf-8")
    if access_token.lower().startswith("bearer "):
        auth_header = access_token
    else:
        auth_header = "Bearer {}".format(access_token)

    req = request.Request(
        api_url,
        data=payload,
        method="POST",
        headers={
            "Content-Type": "application/json",
            "Authorization": auth_header,
        },
    )
    try:
        with request.urlopen(req, timeout=_REQUEST_TIMEOUT_SECONDS) as response:  # nosec B310
            status_code = response.getcode()
            if status_code < 200 or status_code >= 300:
                raise RuntimeError("WhatsApp API error: HTTP {}".format(status_code))
    except error.HTTPError as exc:
        _raise_http_error(exc)
    except error.URLError as exc:
        raise RuntimeError("WhatsApp API error: {}".format(exc.reason)) from exc
    logger.debug("WhatsApp message delivered to %s.", phone)


__all__ = ["build_payload", "send_whatsapp", "validate_api_url"]
