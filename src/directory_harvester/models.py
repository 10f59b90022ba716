"""Protocols and lightweight model types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from .selectors import SelectorSpec

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

RUN_IN_PROGRESS = "in_progress"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"


class SearchSession(Protocol):
    """Contract for the browser session driving the directory search."""

    def navigate(self, url: str, wait_condition: str, timeout_ms: int) -> None:
        """Load a URL and wait for the given readiness condition."""

    def locate(self, spec: SelectorSpec, *, timeout_ms: int = 0, visible: bool = False) -> Any:
        """Return the first element matching spec, or None."""

    def fill(self, handle: Any, text: str) -> None:
        """Replace an input's value and fire input/change/keyup events."""

    def click(self, handle: Any) -> None:
        """Click an element."""

    def is_visible(self, handle: Any) -> bool:
        """Return True when the element is displayed."""

    def is_enabled(self, handle: Any) -> bool:
        """Return True when the element accepts interaction."""

    def evaluate_in_page(self, script: str, *args: Any) -> Any:
        """Run a script in the page and return its result."""

    def wait_ms(self, duration: int) -> None:
        """Pause for a fixed number of milliseconds."""

    def screenshot(self, path: str) -> None:
        """Save a full-page screenshot for diagnostics."""

    def title(self) -> str:
        """Return the current page title."""

    def current_url(self) -> str:
        """Return the current page URL."""

    def content(self) -> str:
        """Return the current page HTML."""

    def visible_text(self) -> str:
        """Return the page's rendered text with line breaks preserved."""

    def close(self) -> None:
        """Release the browser."""


@dataclass(frozen=True)
class SearchUnit:
    """One postcode to search, with its region when known."""

    postcode: str
    region: str | None = None


@dataclass(frozen=True)
class MemberRecord:
    """A normalized directory member."""

    email: str
    name: str = ""
    preferred_name: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    company: str = ""
    business_address: str = ""
    phone: str = ""
    website: str | None = None
    designation: str = ""
    specialisation: str = ""
    latitude: float | None = None
    longitude: float | None = None
    member_type: str = ""
    specialties: str | None = None
    special_conditions: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the directory's own field names."""
        return {
            "strSelectedMemberType": self.member_type,
            "Name": self.name,
            "PreferredName": self.preferred_name,
            "FirstName": self.first_name,
            "MiddleName": self.middle_name,
            "LastName": self.last_name,
            "Company": self.company,
            "BusinessAddress": self.business_address,
            "Phone": self.phone,
            "Email": self.email,
            "CompanyWebsite": self.website,
            "Designation": self.designation,
            "Specialties": self.specialties,
            "SpecialConditions": self.special_conditions,
            "Specialisation": self.specialisation,
            "Longitude": self.longitude,
            "Latitude": self.latitude,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> MemberRecord:
        return cls(
            email=str(payload.get("Email") or ""),
            name=str(payload.get("Name") or ""),
            preferred_name=str(payload.get("PreferredName") or ""),
            first_name=str(payload.get("FirstName") or ""),
            middle_name=str(payload.get("MiddleName") or ""),
            last_name=str(payload.get("LastName") or ""),
            company=str(payload.get("Company") or ""),
            business_address=str(payload.get("BusinessAddress") or ""),
            phone=str(payload.get("Phone") or ""),
            website=payload.get("CompanyWebsite"),
            designation=str(payload.get("Designation") or ""),
            specialisation=str(payload.get("Specialisation") or ""),
            latitude=payload.get("Latitude"),
            longitude=payload.get("Longitude"),
            member_type=str(payload.get("strSelectedMemberType") or ""),
            specialties=payload.get("Specialties"),
            special_conditions=str(payload.get("SpecialConditions") or ""),
        )


@dataclass(frozen=True)
class SearchResult:
    """Outcome of processing one search unit."""

    unit: SearchUnit
    records: tuple[MemberRecord, ...] = ()
    status: str = STATUS_SUCCESS
    error: str | None = None

    @property
    def record_count(self) -> int:
        return len(self.records)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def failure(cls, unit: SearchUnit, error: str) -> SearchResult:
        return cls(unit=unit, records=(), status=STATUS_FAILED, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "postcode": self.unit.postcode,
            "state": self.unit.region,
            "totalCount": self.record_count,
            "members": [record.to_dict() for record in self.records],
            "status": self.status,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SearchResult:
        error = payload.get("error")
        status = payload.get("status") or (STATUS_FAILED if error else STATUS_SUCCESS)
        members = payload.get("members") or []
        return cls(
            unit=SearchUnit(postcode=str(payload["postcode"]), region=payload.get("state")),
            records=tuple(
                MemberRecord.from_dict(item) for item in members if isinstance(item, dict)
            ),
            status=str(status),
            error=str(error) if error else None,
        )


@dataclass(frozen=True)
class RunCheckpoint:
    """Snapshot of run progress as persisted by the checkpoint store."""

    status: str
    processed: int
    total: int
    timestamp: str
    results: tuple[SearchResult, ...] = field(default_factory=tuple)

    @property
    def progress_percent(self) -> str:
        if self.total <= 0:
            return "0.0"
        return f"{self.processed / self.total * 100:.1f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "processed": self.processed,
            "total": self.total,
            "progress_percent": self.progress_percent,
            "last_updated": self.timestamp,
            "results": [result.to_dict() for result in self.results],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RunCheckpoint:
        results = payload.get("results") or []
        return cls(
            status=str(payload.get("status", RUN_IN_PROGRESS)),
            processed=int(payload.get("processed", len(results))),
            total=int(payload.get("total", 0)),
            timestamp=str(payload.get("last_updated", "")),
            results=tuple(
                SearchResult.from_dict(item) for item in results if isinstance(item, dict)
            ),
        )
