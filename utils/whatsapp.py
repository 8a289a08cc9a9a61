from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v21.0"


class WhatsAppGateway:
    """Outbound chat gateway over the WhatsApp Cloud API, used for one-time passwords."""

    def __init__(
        self,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        template_name: str = "otp_verification",
        template_lang: str = "en_US",
        country_code: str = "91",
        timeout: int = 20,
    ):
        self.access_token = access_token or ""
        self.phone_number_id = phone_number_id or ""
        self.template_name = template_name
        self.template_lang = template_lang
        self.country_code = country_code
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "WhatsAppGateway":
        return cls(
            cfg.get("WHATSAPP_ACCESS_TOKEN"),
            cfg.get("WHATSAPP_PHONE_NUMBER_ID"),
            template_name=cfg.get("WHATSAPP_TEMPLATE_NAME") or "otp_verification",
            template_lang=cfg.get("WHATSAPP_TEMPLATE_LANG") or "en_US",
            country_code=cfg.get("WHATSAPP_COUNTRY_CODE") or "91",
        )

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not self.access_token or not self.phone_number_id:
            return (
                False,
                "WhatsApp Cloud API is not configured. Set WHATSAPP_ACCESS_TOKEN and WHATSAPP_PHONE_NUMBER_ID.",
            )
        return True, None

    def _endpoint(self) -> str:
        return f"https://graph.facebook.com/{GRAPH_API_VERSION}/{self.phone_number_id}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def format_number(self, mobile: str) -> str:
        digits = "".join(ch for ch in str(mobile) if ch.isdigit())
        if digits.startswith("0"):
            digits = digits[1:]
        return f"{self.country_code}{digits}"

    def otp_payload(self, mobile: str, otp: str) -> Dict[str, Any]:
        components: List[Dict[str, Any]] = [
            {"type": "body", "parameters": [{"type": "text", "text": otp}]},
            # Copy-code button on the approved template
            {
                "type": "button",
                "sub_type": "url",
                "index": "0",
                "parameters": [{"type": "text", "text": otp}],
            },
        ]
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": self.format_number(mobile),
            "type": "template",
            "template": {
                "name": self.template_name,
                "language": {"code": self.template_lang},
                "components": components,
            },
        }

    def send_otp(self, mobile: str, otp: str) -> Tuple[bool, Optional[str]]:
        ok, reason = self.is_configured()
        if not ok:
            logger.warning("OTP not sent: %s", reason)
            return False, reason
        try:
            r = requests.post(
                self._endpoint(),
                headers=self._headers(),
                json=self.otp_payload(mobile, otp),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("WhatsApp OTP request failed: %s", e)
            return False, str(e)
        if 200 <= r.status_code < 300:
            return True, None
        logger.warning("WhatsApp OTP rejected: HTTP %s", r.status_code)
        return False, f"HTTP {r.status_code}: {r.text}"
