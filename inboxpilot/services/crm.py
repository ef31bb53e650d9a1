"""
CRM capability over the HubSpot CRM v3 REST API (contacts search/create/list, notes).
"""

import logging
from datetime import datetime
from typing import Any

import httpx

from inboxpilot.core.config import CRM_API_TIMEOUT, HUBSPOT_API_BASE, HUBSPOT_PAGE_SIZE
from inboxpilot.core.errors import ServiceUnavailableError
from inboxpilot.core.models import Owner

logger = logging.getLogger(__name__)

CONTACT_PROPERTIES = ["email", "firstname", "lastname", "company", "jobtitle", "phone"]
SYNC_CONTACT_PROPERTIES = CONTACT_PROPERTIES + ["city", "state", "country"]
NOTE_PROPERTIES = ["hs_note_body", "hs_timestamp", "hs_lastmodifieddate"]
# HubSpot-defined association type: note → contact
NOTE_TO_CONTACT_ASSOCIATION = 202


class HubSpotCRM:
    def __init__(
        self,
        base_url: str = HUBSPOT_API_BASE,
        timeout: float = CRM_API_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        page_size: int = HUBSPOT_PAGE_SIZE,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._page_size = page_size

    def _request(
        self, owner: Owner, method: str, path: str, payload: dict[str, Any] | None = None, params: dict | None = None
    ) -> dict[str, Any]:
        if not owner.hubspot_access_token:
            raise ServiceUnavailableError("No HubSpot access token available")
        with httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {owner.hubspot_access_token}"},
        ) as client:
            resp = client.request(method, path, json=payload, params=params)
        if resp.status_code not in (200, 201):
            raise ServiceUnavailableError(f"HubSpot error {resp.status_code}: {resp.text[:200]}")
        return resp.json()

    def _post(self, owner: Owner, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request(owner, "POST", path, payload=payload)

    def _list_all(self, owner: Owner, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow paging.next.after until HubSpot stops returning a cursor."""
        results: list[dict[str, Any]] = []
        after = None
        while True:
            page_params = {**params, "limit": self._page_size}
            if after:
                page_params["after"] = after
            data = self._request(owner, "GET", path, params=page_params)
            results.extend(data.get("results") or [])
            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                return results

    def search(self, owner: Owner, query: str, limit: int = 5) -> list[dict[str, Any]]:
        data = self._post(
            owner,
            "/crm/v3/objects/contacts/search",
            {"query": query, "limit": limit, "properties": CONTACT_PROPERTIES},
        )
        results = []
        for r in data.get("results") or []:
            props = r.get("properties") or {}
            results.append({"external_id": r.get("id"), **{k: props.get(k) for k in CONTACT_PROPERTIES}})
        logger.info("[crm:search] owner=%s query=%r results=%d", owner.id, query, len(results))
        return results

    def create(self, owner: Owner, fields: dict[str, Any]) -> dict[str, Any]:
        properties = {k: v for k, v in fields.items() if k in CONTACT_PROPERTIES and v}
        data = self._post(owner, "/crm/v3/objects/contacts", {"properties": properties})
        logger.info("[crm:create] owner=%s external_id=%s", owner.id, data.get("id"))
        return {"external_id": data.get("id", "")}

    def create_note(self, owner: Owner, contact_external_id: str, body: str, timestamp: datetime) -> dict[str, Any]:
        data = self._post(
            owner,
            "/crm/v3/objects/notes",
            {
                "properties": {"hs_note_body": body, "hs_timestamp": int(timestamp.timestamp() * 1000)},
                "associations": [
                    {
                        "to": {"id": contact_external_id},
                        "types": [
                            {"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": NOTE_TO_CONTACT_ASSOCIATION}
                        ],
                    }
                ],
            },
        )
        return {"external_id": data.get("id", "")}

    def fetch_all_contacts(self, owner: Owner) -> list[dict[str, Any]]:
        """Every contact in the owner's portal as {external_id, email, name, properties}."""
        raw = self._list_all(owner, "/crm/v3/objects/contacts", {"properties": ",".join(SYNC_CONTACT_PROPERTIES)})
        contacts = []
        for r in raw:
            props = r.get("properties") or {}
            name = " ".join(p for p in (props.get("firstname"), props.get("lastname")) if p) or "Unknown"
            contacts.append(
                {"external_id": str(r.get("id", "")), "email": props.get("email"), "name": name, "properties": props}
            )
        logger.info("[crm:fetch_all_contacts] owner=%s contacts=%d", owner.id, len(contacts))
        return contacts

    def fetch_all_notes(self, owner: Owner) -> list[dict[str, Any]]:
        """Every note as {external_id, body, contact_external_ids}; associations come from the list call."""
        raw = self._list_all(
            owner, "/crm/v3/objects/notes", {"properties": ",".join(NOTE_PROPERTIES), "associations": "contacts"}
        )
        notes = []
        for r in raw:
            props = r.get("properties") or {}
            linked = ((r.get("associations") or {}).get("contacts") or {}).get("results") or []
            notes.append(
                {
                    "external_id": str(r.get("id", "")),
                    "body": props.get("hs_note_body") or "",
                    "contact_external_ids": [str(a.get("id")) for a in linked if a.get("id")],
                }
            )
        logger.info("[crm:fetch_all_notes] owner=%s notes=%d", owner.id, len(notes))
        return notes
