import os
from typing import Dict, Any, List, Optional, Iterable, Protocol
import httpx
from loguru import logger

from config import CANDIDATE_LIMIT, MIN_PHONE_DIGITS
from matching.errors import InfrastructureError
from matching.models import ExistingRecordRef, SourceType
from matching.normalize import (
    normalize_company_name,
    normalize_email,
    normalize_phone,
    extract_domain_from_email,
)

CLOSED_LEAD_STATUSES = {"Closed"}
CLOSED_PIPELINE_STATUSES = {"Closed - Won", "Closed - Lost", "Dead"}


def _same_subscriber(phone: str, existing: str) -> bool:
    """Equal trailing digits, tolerating a missing country code on either side."""
    if len(existing) < MIN_PHONE_DIGITS:
        return False
    return phone[-MIN_PHONE_DIGITS:] == existing[-MIN_PHONE_DIGITS:]


class RecordGateway(Protocol):
    """Narrowing queries over stored leads and pipeline items."""

    def find_by_exact_key(
        self,
        normalized_email: Optional[str] = None,
        normalized_phone: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> List[ExistingRecordRef]: ...

    def find_by_approximate_company(self, normalized_company_token: str) -> List[ExistingRecordRef]: ...

    def search(self, query: str, limit: int = 20) -> List[ExistingRecordRef]: ...

    def ping(self) -> bool: ...


def _owner(row: Dict[str, Any]) -> Dict[str, Any]:
    owner = row.get("owner") or row.get("bdr") or {}
    owner_id = owner.get("id", row.get("owner_id"))
    return {
        "id": str(owner_id) if owner_id is not None else None,
        "name": owner.get("name") or row.get("owner_name"),
    }


def record_from_lead(row: Dict[str, Any]) -> ExistingRecordRef:
    """Adapt a raw lead row from the CRM into an ExistingRecordRef."""
    owner = _owner(row)
    status = row.get("status")
    return ExistingRecordRef(
        id=f"lead-{row['id']}",
        source_id=str(row["id"]),
        source_type=SourceType.LEAD,
        name=row.get("name") or "",
        email=row.get("email"),
        phone=row.get("phone"),
        company=row.get("company"),
        owner_id=owner["id"],
        owner_name=owner["name"],
        last_contact_date=row.get("last_activity_at") or row.get("lastActivityAt"),
        status=status,
        is_active=status not in CLOSED_LEAD_STATUSES,
    )


def record_from_pipeline_item(row: Dict[str, Any]) -> ExistingRecordRef:
    """Adapt a raw pipeline item row; falls back to lastUpdated for recency."""
    owner = _owner(row)
    status = row.get("status")
    last_contact = (
        row.get("last_activity_at")
        or row.get("lastActivityAt")
        or row.get("last_updated")
        or row.get("lastUpdated")
    )
    return ExistingRecordRef(
        id=f"pipeline-{row['id']}",
        source_id=str(row["id"]),
        source_type=SourceType.PIPELINE_ITEM,
        name=row.get("name") or "",
        email=row.get("email"),
        phone=row.get("phone"),
        company=row.get("company"),
        owner_id=owner["id"],
        owner_name=owner["name"],
        last_contact_date=last_contact,
        status=status,
        is_active=status not in CLOSED_PIPELINE_STATUSES,
    )


class CrmRecordGateway:
    """Candidate lookups against the CRM's REST API."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, limit: int = CANDIDATE_LIMIT):
        self.base_url = (base_url or os.getenv("CRM_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("CRM_API_KEY")
        self.timeout = timeout or float(os.getenv("CRM_TIMEOUT_SECONDS", "5"))
        self.limit = limit

        if not self.base_url:
            logger.warning("No CRM_API_URL configured, candidate lookups will fail")

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for CRM API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json"
        } if self.api_key else {"Accept": "application/json"}

    def _fetch(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        params = {k: v for k, v in params.items() if v}
        params["limit"] = self.limit
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(
                    f"{self.base_url}{path}",
                    headers=self._get_headers(),
                    params=params
                )
                response.raise_for_status()
                return response.json().get("results", [])
        except (httpx.HTTPError, ValueError) as e:
            raise InfrastructureError(f"CRM lookup {path} failed: {e}") from e

    def _fetch_both(self, params: Dict[str, Any]) -> List[ExistingRecordRef]:
        leads = self._fetch("/leads", params)
        pipeline_items = self._fetch("/pipeline-items", params)
        records = [record_from_lead(row) for row in leads]
        records.extend(record_from_pipeline_item(row) for row in pipeline_items)
        return records[:self.limit]

    def find_by_exact_key(self, normalized_email: Optional[str] = None,
                          normalized_phone: Optional[str] = None,
                          domain: Optional[str] = None) -> List[ExistingRecordRef]:
        if not (normalized_email or normalized_phone or domain):
            return []
        return self._fetch_both({
            "email": normalized_email,
            "phone_digits": normalized_phone,
            "phone_suffix": normalized_phone[-MIN_PHONE_DIGITS:] if normalized_phone else None,
            "email_domain": domain,
            "match": "any",
        })

    def find_by_approximate_company(self, normalized_company_token: str) -> List[ExistingRecordRef]:
        if not normalized_company_token:
            return []
        return self._fetch_both({"company_contains": normalized_company_token})

    def search(self, query: str, limit: int = 20) -> List[ExistingRecordRef]:
        if not query:
            return []
        return self._fetch_both({"q": query})[:limit]

    def ping(self) -> bool:
        if not self.base_url:
            return False
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(f"{self.base_url}/health", headers=self._get_headers())
                return response.status_code < 500
        except httpx.HTTPError as e:
            logger.error(f"CRM health check failed: {e}")
            return False


class InMemoryRecordGateway:
    """List-backed gateway for development, demos and tests."""

    def __init__(self, records: Optional[Iterable[ExistingRecordRef]] = None, limit: int = CANDIDATE_LIMIT):
        self.records: List[ExistingRecordRef] = list(records or [])
        self.limit = limit

    def add(self, record: ExistingRecordRef) -> None:
        self.records.append(record)

    def find_by_exact_key(self, normalized_email: Optional[str] = None,
                          normalized_phone: Optional[str] = None,
                          domain: Optional[str] = None) -> List[ExistingRecordRef]:
        found = []
        for record in self.records:
            email = normalize_email(record.email)
            if normalized_email and email == normalized_email:
                found.append(record)
            elif normalized_phone and _same_subscriber(normalized_phone, normalize_phone(record.phone)):
                found.append(record)
            elif domain and extract_domain_from_email(email) == domain:
                found.append(record)
        return found[:self.limit]

    def find_by_approximate_company(self, normalized_company_token: str) -> List[ExistingRecordRef]:
        if not normalized_company_token:
            return []
        found = [
            record for record in self.records
            if normalized_company_token in normalize_company_name(record.company)
        ]
        return found[:self.limit]

    def search(self, query: str, limit: int = 20) -> List[ExistingRecordRef]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        found = []
        for record in self.records:
            haystacks = [record.name, record.company, record.email, record.phone]
            if any(needle in (value or "").lower() for value in haystacks):
                found.append(record)
        return found[:limit]

    def ping(self) -> bool:
        return True
