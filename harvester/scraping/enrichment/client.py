"""
HTTP client for the listing lead API that reveals advertiser numbers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import requests

from harvester.config import EnrichmentSettings
from harvester.domain.harvest import Credential
from harvester.scraping.errors import LeadRequestError, RateLimitedError, UnauthorizedError

DEFAULT_API_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class LeadResult:
    phones: list[str] = field(default_factory=list)
    lead_id: str | None = None


class LeadApiClient:
    """
    Submit a contact lead for a listing and read back the advertiser numbers.

    Failures are classified into `RateLimitedError` (429),
    `UnauthorizedError` (401) and `LeadRequestError` (anything else).
    """

    def __init__(
        self,
        *,
        settings: EnrichmentSettings,
        session: requests.Session | None = None,
        user_agent: str = DEFAULT_API_USER_AGENT,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._user_agent = user_agent
        self._listing_id_regex = re.compile(settings.listing_id_pattern)

    def listing_id(self, url: str) -> str | None:
        match = self._listing_id_regex.search(url)
        return match.group(1) if match else None

    def request_lead(
        self,
        listing_id: str,
        credential: Credential,
        *,
        whatsapp: bool = False,
    ) -> LeadResult:
        url = f"{self._settings.api_base}/{listing_id}{self._settings.lead_endpoint}"
        try:
            response = self._session.post(
                url,
                json=self._payload(whatsapp=whatsapp),
                headers=self._headers(listing_id, credential),
                timeout=self._settings.request_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise LeadRequestError(f"Lead request failed for listing {listing_id}: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitedError(f"Rate limited on listing {listing_id}", status_code=429)
        if response.status_code == 401:
            raise UnauthorizedError(f"Unauthorized on listing {listing_id}", status_code=401)
        if response.status_code >= 400:
            raise LeadRequestError(
                f"Lead request for listing {listing_id} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise LeadRequestError(f"Malformed lead response for listing {listing_id}") from exc
        return self.parse_lead_response(body)

    @staticmethod
    def parse_lead_response(body: Any) -> LeadResult:
        if not isinstance(body, dict):
            raise LeadRequestError("Lead response is not a JSON object.")
        lead = body.get("lead") if isinstance(body.get("lead"), dict) else {}
        listing = lead.get("listing") if isinstance(lead.get("listing"), dict) else {}
        raw_phones = listing.get("listing_phones") or []
        phones = [
            str(entry["number"]).strip()
            for entry in raw_phones
            if isinstance(entry, dict) and entry.get("number")
        ]
        lead_id = body.get("lead_id")
        return LeadResult(phones=phones, lead_id=str(lead_id) if lead_id is not None else None)

    def _payload(self, *, whatsapp: bool) -> dict[str, Any]:
        return {
            "fullName": self._settings.contact_full_name,
            "email": self._settings.contact_email,
            "phone": {
                "number": self._settings.contact_phone,
                "country_code": self._settings.contact_country_code,
            },
            "source": self._settings.lead_source,
            "type": self._settings.whatsapp_lead_type if whatsapp else self._settings.phone_lead_type,
        }

    def _headers(self, listing_id: str, credential: Credential) -> dict[str, str]:
        return {
            "User-Agent": self._user_agent,
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "ar-EG,ar;q=0.9,en-US;q=0.8,en;q=0.7",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Referer": self._settings.referer_template.format(listing_id=listing_id),
            "Cookie": credential.cookie or "",
            "authorization": credential.authorization_token or "",
        }
