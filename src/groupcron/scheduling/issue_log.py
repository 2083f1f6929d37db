"""Best-effort forwarding of issue reports embedded in task results."""

from __future__ import annotations

import re
from datetime import date

import httpx

from groupcron.infrastructure.config import ISSUE_API_KEY, ISSUE_API_TIMEOUT, ISSUE_API_URL
from groupcron.infrastructure.logger import logger

ISSUE_BLOCK = re.compile(r"<issue>([\s\S]*?)</issue>")


def extract_issue_payload(text: str | None) -> str | None:
    """Trimmed content of the first <issue>...</issue> block, if any."""
    if not text:
        return None
    match = ISSUE_BLOCK.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


class IssueLogClient:
    """POSTs issue reports to an external tracker. Never raises."""

    def __init__(
        self,
        api_url: str = ISSUE_API_URL,
        api_key: str = ISSUE_API_KEY,
        timeout_s: float = ISSUE_API_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_url and self._api_key)

    async def save(self, content: str, today: date | None = None) -> bool:
        if not self.configured:
            logger.debug("Issue log endpoint not configured, skipping save")
            return False
        if not content or not content.strip():
            logger.debug("Empty issue content, skipping save")
            return False

        body = {"date": (today or date.today()).isoformat(), "content": content}
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._api_url}/issues",
                    json=body,
                    headers={"X-API-Key": self._api_key},
                )
        except httpx.HTTPError as err:
            logger.warning("Error saving issue", error=str(err), error_type=type(err).__name__)
            return False

        if response.is_success:
            logger.info("Issue saved", status_code=response.status_code)
            return True

        logger.warning("Failed to save issue", status_code=response.status_code, response_preview=response.text[:200])
        return False
