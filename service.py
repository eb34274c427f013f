"""
Duplicate detection service: warn before duplicate outreach, record what the
salesperson decided, and report on both.

Detection is best-effort. Anything that goes wrong while looking for
duplicates is logged and reported as "no warning" so lead and pipeline
creation is never blocked. Recording a decision is the opposite: it feeds the
audit trail, so storage failures there are raised to the caller.
"""

import uuid
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Union
from pydantic import ValidationError
from loguru import logger

from config import MatchingConfig
from graph.workflow import build_workflow
from matching.errors import DuplicateValidationError, WarningNotFoundError
from matching.models import (
    AuditLogEntry,
    CandidateInput,
    DuplicateAction,
    DuplicateCheckResult,
    DuplicateStatistics,
    DuplicateWarning,
    ExistingRecordRef,
    SEVERITY_ORDER,
    UserDecision,
    utcnow,
)
from matching.relevance import calculate_search_relevance

CONFLICT_WINDOW_DAYS = 14
MAX_CONFLICT_WINDOW_DAYS = 365
MIN_SEARCH_QUERY = 2
MAX_SEARCH_QUERY = 100


def validate_warning_id(warning_id: str) -> str:
    """Cheap format check before touching storage."""
    try:
        return str(uuid.UUID(str(warning_id)))
    except ValueError:
        raise DuplicateValidationError(f"Malformed warning id: {warning_id!r}")


def _coerce_candidate(candidate: Union[CandidateInput, Dict[str, Any]]) -> CandidateInput:
    if isinstance(candidate, CandidateInput):
        return candidate
    try:
        return CandidateInput.model_validate(candidate)
    except ValidationError as e:
        raise DuplicateValidationError(f"Invalid candidate data: {e}") from e


class DuplicateDetectionService:
    """Match engine, decision recorder and statistics over one gateway and store."""

    def __init__(self, gateway, store, config: Optional[MatchingConfig] = None):
        self.gateway = gateway
        self.store = store
        self.config = config or MatchingConfig.from_env()
        self.graph = build_workflow(gateway, store, self.config)

    def check_duplicates(
        self,
        candidate: Union[CandidateInput, Dict[str, Any]],
        triggered_by_user_id: str,
        action: DuplicateAction = DuplicateAction.LEAD_CREATE,
    ) -> DuplicateCheckResult:
        """
        Caller-facing duplicate check.

        Raises:
            DuplicateValidationError: malformed email, or none of name, email,
                phone and company supplied
        """
        candidate = _coerce_candidate(candidate)
        try:
            action = DuplicateAction(action)
        except ValueError:
            raise DuplicateValidationError(f"Unknown action: {action!r}")
        if not candidate.has_identifying_field():
            raise DuplicateValidationError("At least one of name, email, phone or company is required")
        return self.check_for_duplicates(candidate, triggered_by_user_id, action)

    def check_for_duplicates(
        self,
        candidate: CandidateInput,
        triggered_by_user_id: str,
        action: DuplicateAction = DuplicateAction.LEAD_CREATE,
        now: Optional[datetime] = None,
    ) -> DuplicateCheckResult:
        """
        Look for existing leads or pipeline items matching the candidate.

        Args:
            candidate: Record about to be created or updated
            triggered_by_user_id: Salesperson performing the action
            action: Operation that triggered the check
            now: Reference time for recency (defaults to current UTC time)

        Returns:
            Result with has_warning set and a persisted warning id when at
            least one match survived; a no-warning result otherwise
        """
        initial_state = {
            "candidate": candidate,
            "user_id": triggered_by_user_id,
            "action": action,
            "now": now or utcnow(),
            "matches": [],
            "errors": [],
        }

        try:
            result = self.graph.invoke(initial_state)
        except Exception as e:
            logger.error(f"Duplicate detection failed, allowing operation to continue: {e}")
            return DuplicateCheckResult(has_warning=False)

        for error in result.get("errors", []):
            logger.warning(f"Duplicate check degraded: {error}")

        if not result.get("warning_id"):
            return DuplicateCheckResult(has_warning=False)

        return DuplicateCheckResult(
            has_warning=True,
            severity=result["severity"],
            warning_id=result["warning_id"],
            message=result.get("message"),
            matches=result["matches"],
        )

    def record_decision(
        self,
        warning_id: str,
        decision: Union[UserDecision, str],
        user_id: str,
        reason: Optional[str] = None,
    ) -> DuplicateWarning:
        """
        Record what the user did about a warning and append an audit entry.

        A later call overwrites the warning's current decision; every call
        adds its own audit entry.

        Raises:
            DuplicateValidationError: malformed warning id or unknown decision
            WarningNotFoundError: no warning with that id
            InfrastructureError: the store failed; the decision was not recorded
        """
        warning_id = validate_warning_id(warning_id)
        try:
            decision = UserDecision(decision)
        except ValueError:
            raise DuplicateValidationError(f"Unknown decision: {decision!r}")

        warning = self.store.get_warning(warning_id)
        if warning is None:
            raise WarningNotFoundError(warning_id)

        if warning.decision_made:
            logger.warning(
                f"Warning {warning_id} already decided as {warning.user_decision.value}, "
                f"overwriting with {decision.value}"
            )

        decided_at = utcnow()
        warning = warning.model_copy(update={
            "decision_made": True,
            "user_decision": decision,
            "decision_at": decided_at,
            "proceed_reason": reason,
        })
        entry = AuditLogEntry(
            warning_id=warning_id,
            user_id=user_id,
            decision=decision,
            reason=reason,
            timestamp=decided_at,
        )
        # Decision and audit row are written together or not at all
        self.store.record_decision(warning, entry)

        logger.info(f"Decision {decision.value} recorded for warning {warning_id} by {user_id}")
        return warning

    def get_duplicate_statistics(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> DuplicateStatistics:
        """Warning and decision rollups for warnings created in the range."""
        warnings = self.store.list_warnings(date_from, date_to)

        total = len(warnings)
        decisions = [w.user_decision for w in warnings]
        proceed_count = decisions.count(UserDecision.PROCEEDED)

        breakdown = {severity: 0 for severity in SEVERITY_ORDER}
        for warning in warnings:
            breakdown[warning.severity] += 1

        return DuplicateStatistics(
            total_warnings=total,
            proceed_count=proceed_count,
            cancelled_count=decisions.count(UserDecision.CANCELLED),
            merged_count=decisions.count(UserDecision.MERGED),
            proceed_rate=(proceed_count / total) * 100 if total > 0 else 0.0,
            severity_breakdown=breakdown,
        )

    def get_warning(self, warning_id: str) -> DuplicateWarning:
        warning_id = validate_warning_id(warning_id)
        warning = self.store.get_warning(warning_id)
        if warning is None:
            raise WarningNotFoundError(warning_id)
        return warning

    def get_audit_trail(self, warning_id: str) -> List[AuditLogEntry]:
        return self.store.list_audit(validate_warning_id(warning_id))

    def get_recent_warnings(self, limit: int = 50, include_resolved: bool = False) -> List[DuplicateWarning]:
        return self.store.recent_warnings(limit=max(1, limit), include_resolved=include_resolved)

    def find_company_conflicts(
        self,
        companies: List[str],
        days: int = CONFLICT_WINDOW_DAYS,
        now: Optional[datetime] = None,
    ) -> Dict[str, bool]:
        """Which of the given companies appeared in a recent warning's matches."""
        companies = [c for c in companies if c]
        if not companies:
            return {}

        days = max(1, min(days, MAX_CONFLICT_WINDOW_DAYS))
        since = (now or utcnow()) - timedelta(days=days)

        conflicted = set()
        for warning in self.store.list_warnings(date_from=since):
            for match in warning.matches:
                if match.existing_record.company in companies:
                    conflicted.add(match.existing_record.company)

        return {company: company in conflicted for company in companies}

    def search_records(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Free-text lookup across leads and pipeline items, best first."""
        query = (query or "").strip()
        if not MIN_SEARCH_QUERY <= len(query) <= MAX_SEARCH_QUERY:
            raise DuplicateValidationError(
                f"Search query must be {MIN_SEARCH_QUERY}-{MAX_SEARCH_QUERY} characters"
            )
        limit = max(1, min(limit, 100))

        records: List[ExistingRecordRef] = self.gateway.search(query, limit=limit)
        scored = [
            {"record": record, "relevance": calculate_search_relevance(query, record)}
            for record in records
        ]
        scored.sort(key=lambda item: -item["relevance"])
        return scored[:limit]

    def health(self) -> Dict[str, str]:
        return {
            "warning_store": f"{self.store.backend}:{'ok' if self.store.ping() else 'down'}",
            "crm_gateway": "ok" if self.gateway.ping() else "down",
        }
