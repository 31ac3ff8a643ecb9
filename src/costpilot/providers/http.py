"""Action adapter that delegates to a remote executor over HTTP"""

from typing import Any, Dict, Optional
import logging

import httpx

from ..core.base import ActionAdapter, ActionOutcome, Recommendation

logger = logging.getLogger(__name__)


class HttpActionAdapter(ActionAdapter):
    """POSTs each recommendation to ``{base_url}/actions``.

    Transport errors and 5xx responses surface as httpx exceptions, which the
    retry classifier treats as transient; 4xx responses are fatal.
    """

    def __init__(self, base_url: str, timeout: float = 30.0,
                 headers: Optional[Dict[str, str]] = None,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout, headers=headers or {})

    def close(self) -> None:
        self.client.close()

    def apply(self, recommendation: Recommendation) -> ActionOutcome:
        payload = {
            "recommendationId": recommendation.id,
            "resourceId": recommendation.resource_id,
            "resourceType": recommendation.resource_type,
            "type": recommendation.waste_kind.value,
            "action": recommendation.recommended_action,
        }
        response = self.client.post(f"{self.base_url}/actions", json=payload)
        response.raise_for_status()

        body = self._json(response)
        success = body.get("success", True)
        message = body.get("message", f"HTTP {response.status_code}")
        logger.debug(f"Remote executor answered {response.status_code} for {recommendation.id}")
        return ActionOutcome(
            success=bool(success),
            message=str(message),
            metadata={k: v for k, v in body.items() if k not in ("success", "message")},
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
