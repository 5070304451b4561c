"""
Print-on-demand partner integration.

The partner fetches the interior and cover PDFs itself from long-lived signed
URLs, so this module only needs to build the print-job payload, place and
inspect orders, and map status webhooks back onto internal order records.
Authentication is an OAuth client-credentials token fetched per request.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import FulfillmentError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/realms/glasstree/protocol/openid-connect/token"
COST_PATH = "/print-job-cost-calculations/"
PRINT_JOBS_PATH = "/print-jobs/"

# {width}X{height} + FC (full colour) + STDPB/STDHC (paperback/hardcover) + 080 paper + finish
POD_PACKAGES: Dict[str, Dict[str, str]] = {
    "8x8": {
        "soft": "0850X0850FCSTDPB080UW444",
        "hard": "0850X0850FCSTDHC080CW444",
    },
    "10x10": {
        "soft": "1000X1000FCSTDPB080UW444",
        "hard": "1000X1000FCSTDHC080CW444",
    },
    "8.5x11": {
        "soft": "0850X1100FCSTDPB080UW444",
        "hard": "0850X1100FCSTDHC080CW444",
    },
}

SHIPPING_LEVELS = ("MAIL", "GROUND", "PRIORITY", "EXPEDITED")


class ShippingAddress(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    street1: str
    street2: str = ""
    city: str
    state: str = ""
    postal_code: str
    country: str = Field(min_length=2, max_length=2)
    phone: str = ""

    def to_partner(self, include_contact: bool = True) -> Dict[str, str]:
        address = {
            "city": self.city,
            "country_code": self.country,
            "postcode": self.postal_code,
            "state_code": self.state,
            "street1": self.street1,
        }
        if include_contact:
            address.update({"name": self.name, "phone_number": self.phone, "street2": self.street2})
        return address


def pod_package_id(trim_size: str, binding: str) -> str:
    try:
        return POD_PACKAGES[trim_size][binding]
    except KeyError as exc:
        raise FulfillmentError(f"Invalid book configuration: {trim_size} {binding}") from exc


def build_print_job_payload(
    *,
    external_id: str,
    trim_size: str,
    binding: str,
    page_count: int,
    quantity: int,
    interior_url: str,
    cover_url: str,
    shipping_address: ShippingAddress,
    shipping_level: str = "MAIL",
    contact_email: str = "",
    production_delay_minutes: int = 120,
) -> Dict[str, Any]:
    """
    Build the partner's print-job request body.

    production_delay leaves a cancellation window before the job is
    released to production.
    """
    if shipping_level not in SHIPPING_LEVELS:
        raise FulfillmentError(f"Unknown shipping level '{shipping_level}'. Use one of {list(SHIPPING_LEVELS)}")
    return {
        "contact_email": contact_email,
        "external_id": external_id,
        "line_items": [
            {
                "page_count": page_count,
                "pod_package_id": pod_package_id(trim_size, binding),
                "quantity": quantity,
                "printable_normalization": {
                    "cover": {"source_url": cover_url},
                    "interior": {"source_url": interior_url},
                },
            }
        ],
        "production_delay": production_delay_minutes,
        "shipping_address": shipping_address.to_partner(),
        "shipping_level": shipping_level,
    }


def partner_status_name(status: Any) -> str:
    """Partner statuses arrive either as a bare name or as {"name": ...}."""
    if isinstance(status, dict):
        return str(status.get("name") or "UNKNOWN")
    return str(status or "UNKNOWN")


class FulfillmentClient:
    """
    HTTP client for the print partner API.

    Args:
        api_base: Partner API root URL
        client_id: OAuth client id
        client_secret: OAuth client secret
        client: Pre-built httpx client (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        api_base: str,
        client_id: str,
        client_secret: str,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def _access_token(self) -> str:
        if not self._client_id or not self._client_secret:
            raise FulfillmentError("Print partner API credentials not configured")
        response = self._client.post(
            f"{self.api_base}{TOKEN_PATH}",
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )
        if response.is_error:
            raise FulfillmentError(f"Partner auth failed: {response.text}", status_code=response.status_code)
        return response.json()["access_token"]

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            response = self._client.request(method, f"{self.api_base}{path}", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise FulfillmentError(f"Partner request {method} {path} failed: {exc}") from exc
        if response.is_error:
            logger.error(f"Partner API {method} {path} returned {response.status_code}: {response.text}")
            raise FulfillmentError(
                f"Partner request {method} {path} failed: {response.text}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    def calculate_cost(
        self,
        trim_size: str,
        binding: str,
        page_count: int,
        quantity: int,
        shipping_address: ShippingAddress,
        shipping_level: str = "MAIL",
    ) -> Dict[str, Any]:
        data = self._request("POST", COST_PATH, {
            "line_items": [
                {
                    "page_count": page_count,
                    "pod_package_id": pod_package_id(trim_size, binding),
                    "quantity": quantity,
                }
            ],
            "shipping_address": shipping_address.to_partner(include_contact=False),
            "shipping_level": shipping_level,
        })
        line_items = data.get("line_item_costs") or [{}]
        return {
            "currency": data.get("currency", "USD"),
            "total_cost_excl_tax": data.get("total_cost_excl_tax"),
            "total_cost_incl_tax": data.get("total_cost_incl_tax"),
            "shipping_cost": (data.get("shipping_cost") or {}).get("total_cost_excl_tax"),
            "printing_cost": line_items[0].get("total_cost_excl_tax"),
            "tax": data.get("total_tax"),
        }

    def create_print_job(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", PRINT_JOBS_PATH, payload)
        logger.info(f"Created partner print job {data.get('id')} for {payload.get('external_id')}")
        return data

    def get_print_job(self, partner_job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"{PRINT_JOBS_PATH}{partner_job_id}/")

    def cancel_print_job(self, partner_job_id: str) -> Dict[str, Any]:
        self._request("DELETE", f"{PRINT_JOBS_PATH}{partner_job_id}/")
        return {"cancelled": True, "partner_job_id": partner_job_id}

    def close(self) -> None:
        self._client.close()
