import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import CallProviderError, ProviderConfigurationError
from app.schemas.client import Client
from app.schemas.lead import Lead
from app.schemas.queue import QueueItem

logger = logging.getLogger(__name__)

# Shown to the agent when a lead has no recorded source.
_DEFAULT_SOURCE = "one of our online platforms"


class RetellService:
    """Places outbound phone calls through the Retell voice-AI API.

    A client's own ``retell.api_key`` takes precedence over the
    service-wide ``RETELL_API_KEY``.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_url = (api_url or settings.RETELL_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.RETELL_API_KEY
        self._timeout = timeout or settings.RETELL_TIMEOUT_SECONDS
        self._transport = transport

    def _api_key_for(self, client: Client) -> str:
        api_key = client.retell.api_key or self._api_key
        if not api_key:
            raise ProviderConfigurationError(
                f"No Retell API key configured for client {client.id}"
            )
        return api_key

    def is_configured_for(self, client: Client) -> bool:
        return client.retell.is_dialable and bool(client.retell.api_key or self._api_key)

    @staticmethod
    def build_payload(client: Client, lead: Lead, item: QueueItem) -> Dict[str, Any]:
        return {
            "agent_id": client.retell.agent_id,
            "from_number": client.retell.from_number,
            "to_number": lead.phone,
            "metadata": {
                "lead_id": lead.id,
                "client_id": client.id,
                "queue_item_id": item.id,
                "priority": item.priority.value,
            },
            "retell_llm_dynamic_variables": {
                "first_name": lead.first_name,
                "last_name": lead.last_name,
                "email": lead.email or "",
                "source": lead.source or _DEFAULT_SOURCE,
                "company": client.name,
            },
        }

    async def create_call(self, client: Client, lead: Lead, item: QueueItem) -> str:
        """Start a call and return the provider's ``call_id``.

        Raises :class:`CallProviderError` for timeouts, transport errors,
        non-2xx responses and responses without a ``call_id``.
        """
        if not client.retell.is_dialable:
            raise ProviderConfigurationError(
                f"Client {client.id} Retell configuration is incomplete"
            )
        headers = {
            "Authorization": f"Bearer {self._api_key_for(client)}",
            "Content-Type": "application/json",
        }
        url = f"{self._api_url}/create-phone-call"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as http:
                response = await http.post(
                    url, json=self.build_payload(client, lead, item), headers=headers
                )
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException:
            logger.error("Retell create-phone-call timed out for lead %s", lead.id)
            raise CallProviderError("Retell API request timed out")
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            logger.error(
                "Retell returned %s for lead %s: %s",
                exc.response.status_code,
                lead.id,
                message,
            )
            raise CallProviderError(
                f"Retell API error: {message}", status_code=exc.response.status_code
            )
        except httpx.HTTPError as exc:
            logger.error("Retell unreachable for lead %s: %s", lead.id, exc)
            raise CallProviderError(f"Failed to create call: {exc}")
        except ValueError:
            raise CallProviderError("Retell API returned a non-JSON response")

        call_id = body.get("call_id") if isinstance(body, dict) else None
        if not call_id:
            raise CallProviderError("Retell API response did not include a call_id")

        logger.info(
            "Retell call %s started for lead %s (client %s)", call_id, lead.id, client.id
        )
        return call_id


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
