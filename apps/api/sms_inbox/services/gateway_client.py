from __future__ import annotations

from dataclasses import dataclass

import httpx

from sms_inbox.core.errors import GatewaySendError
from sms_inbox.models.messaging import Gateway


@dataclass(frozen=True)
class GatewaySendResult:
    external_message_id: str | None
    raw: dict


def send_sms(
    client: httpx.Client,
    *,
    gateway: Gateway,
    to_number: str,
    body: str,
    media_urls: list[str] | None = None,
) -> GatewaySendResult:
    if not gateway.api_endpoint:
        raise GatewaySendError("Gateway has no api_endpoint configured")

    headers = {"Content-Type": "application/json"}
    if gateway.api_key:
        headers["Authorization"] = f"Bearer {gateway.api_key}"

    try:
        res = client.post(
            gateway.api_endpoint,
            json={
                "from": gateway.phone_number,
                "to": to_number,
                "message": body,
                "media_urls": list(media_urls or []),
            },
            headers=headers,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise GatewaySendError(f"Gateway request failed: {exc}") from exc

    _raise_for_gateway_error(res)

    payload: dict = {}
    try:
        parsed = res.json()
        if isinstance(parsed, dict):
            payload = parsed
    except ValueError:
        payload = {}

    external_id = payload.get("message_id") or payload.get("id")
    return GatewaySendResult(
        external_message_id=str(external_id) if external_id is not None else None,
        raw=payload,
    )


def _raise_for_gateway_error(res: httpx.Response) -> None:
    if res.status_code < 400:
        return

    message = f"Gateway error: {res.status_code}"
    try:
        payload = res.json()
        if isinstance(payload, dict):
            detail = payload.get("error") or payload.get("message")
            if isinstance(detail, dict):
                detail = detail.get("message")
            if detail:
                message = f"Gateway error: {res.status_code} {detail}"
    except ValueError:
        pass

    raise GatewaySendError(message, status_code=res.status_code)
