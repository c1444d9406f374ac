import logging

import httpx
from pydantic import BaseModel

from relay.schemas.payloads import CanonicalPayload

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # seconds


class ForwardResult(BaseModel):
    ok: bool
    status_code: int
    body: str = ""
    skipped: bool = False


class Forwarder:
    """Sends one payload to the downstream ingestion URL. No retries; a failed
    delivery is reported back so the webhook answers 500 and Stripe retries."""

    def __init__(self, url: str | None, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.timeout = timeout

    async def forward(self, payload: CanonicalPayload) -> ForwardResult:
        if not self.url:
            logger.warning(f"No forward URL configured; dropping {payload.type} payload")
            return ForwardResult(ok=True, status_code=0, skipped=True)

        body = payload.model_dump(mode="json", by_alias=True)
        logger.info(f"Forwarding {payload.type} payload downstream")

        # Apps Script answers POSTs with a redirect to the script output
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True
            ) as client:
                r = await client.post(self.url, json=body)
            status_code, text = r.status_code, r.text
        except httpx.HTTPError as exc:
            status_code, text = 0, str(exc)

        success = 200 <= status_code < 300
        if success:
            logger.info(f"Downstream accepted {payload.type}: {status_code}")
        else:
            logger.error(
                f"Forwarding {payload.type} failed: status={status_code} body={text[:500]}"
            )
        return ForwardResult(ok=success, status_code=status_code, body=text)
