import pytest
import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import patch, MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import MatchingConfig
from graph.nodes.capture import capture
from graph.nodes.gather import gather
from graph.nodes.score import score
from graph.nodes.classify import classify
from matching.errors import DuplicateValidationError, InfrastructureError
from matching.models import (
    CandidateInput,
    DuplicateAction,
    ExistingRecordRef,
    MatchType,
    Severity,
    SourceType,
)
from service import DuplicateDetectionService
from tools.crm_gateway import InMemoryRecordGateway
from tools.warning_store import WarningStore

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_record(record_id, days_since_contact=None, **fields):
    source_type = SourceType.PIPELINE_ITEM if record_id.startswith("pipeline") else SourceType.LEAD
    last_contact = NOW - timedelta(days=days_since_contact) if days_since_contact is not None else None
    return ExistingRecordRef(
        id=record_id,
        source_id=record_id.split("-", 1)[1],
        source_type=source_type,
        last_contact_date=last_contact,
        **fields,
    )


def memory_store():
    with patch.dict(os.environ, {"REDIS_URL": ""}):
        return WarningStore()


class TestDuplicateCheckNodes:
    """Individual workflow nodes."""

    def setup_method(self):
        self.config = MatchingConfig(exclude_own_records=False)
        self.candidate = CandidateInput(name="Dr. John Smith", email="John@Example.com", company="Test Corp")
        self.initial_state = {
            "candidate": self.candidate,
            "user_id": "u-1",
            "action": DuplicateAction.LEAD_CREATE,
            "now": NOW,
            "matches": [],
            "errors": [],
        }

    def test_capture_node(self):
        """Capture normalizes the candidate's identifying fields."""
        result = capture(dict(self.initial_state))

        assert result["sufficient"] is True
        assert result["normalized"] == {
            "name": "john smith",
            "email": "john@example.com",
            "phone": "",
            "company": "test",
            "domain": "example.com",
        }

    def test_capture_node_insufficient_data(self):
        """A single usable field is not enough to match on."""
        state = dict(self.initial_state, candidate=CandidateInput(email="john@example.com", name="J"))
        result = capture(state)

        assert result["sufficient"] is False
        assert "normalized" not in result
        assert result["matches"] == []

    def test_gather_node_queries_both_lookups(self):
        state = capture(dict(self.initial_state))
        gateway = MagicMock()
        lead = make_record("lead-1", name="Jon Smith", email="john@example.com")
        gateway.find_by_exact_key.return_value = [lead]
        gateway.find_by_approximate_company.return_value = [lead, make_record("lead-2", company="Test Inc")]

        result = gather(state, gateway, self.config)

        gateway.find_by_exact_key.assert_called_once_with(
            normalized_email="john@example.com",
            normalized_phone=None,
            domain="example.com",
        )
        gateway.find_by_approximate_company.assert_called_once_with("test")
        assert [r.id for r in result["records"]] == ["lead-1", "lead-2"]

    def test_gather_node_skips_free_mail_domain_and_short_phone(self):
        state = dict(self.initial_state, candidate=CandidateInput(
            name="John Smith", email="john@gmail.com", phone="12-34"
        ))
        state = capture(state)
        gateway = MagicMock()
        gateway.find_by_exact_key.return_value = []

        gather(state, gateway, self.config)

        gateway.find_by_exact_key.assert_called_once_with(
            normalized_email="john@gmail.com",
            normalized_phone=None,
            domain=None,
        )
        gateway.find_by_approximate_company.assert_not_called()

    def test_gather_node_failure(self):
        """Gateway errors are recorded and leave an empty record set."""
        state = capture(dict(self.initial_state))
        gateway = MagicMock()
        gateway.find_by_exact_key.side_effect = Exception("connection reset")

        result = gather(state, gateway, self.config)

        assert result["records"] == []
        assert len(result["errors"]) == 1
        assert "Candidate lookup failed" in result["errors"][0]

    def test_gather_node_can_exclude_own_records(self):
        state = capture(dict(self.initial_state))
        gateway = MagicMock()
        gateway.find_by_exact_key.return_value = [
            make_record("lead-1", name="John Smith", owner_id="u-1"),
            make_record("lead-2", name="John Smith", owner_id="u-2"),
        ]
        gateway.find_by_approximate_company.return_value = []

        result = gather(state, gateway, MatchingConfig(exclude_own_records=True))

        assert [r.id for r in result["records"]] == ["lead-2"]

    def test_score_node_keeps_best_match_per_record(self):
        state = capture(dict(self.initial_state))
        state["records"] = [
            make_record("lead-1", name="Jon Smith", email="john@example.com", company="Test Corp"),
            make_record("lead-2", name="Jane Smithers", company="Test Corporation"),
            make_record("lead-3", name="Zed Quincy", company="Unrelated Ltd"),
        ]

        result = score(state, self.config)

        ids = [m.existing_record.id for m in result["matches"]]
        assert ids == ["lead-1", "lead-2"]
        assert result["matches"][0].match_type == MatchType.EMAIL
        assert result["matches"][0].confidence == 1.0
        assert result["matches"][0].match_details["scores"]["PERSON_NAME_COMPANY"] == 1.0
        assert result["matches"][1].match_type == MatchType.COMPANY_NAME

    def test_score_node_boosts_name_with_matching_company(self):
        state = capture(dict(self.initial_state, candidate=CandidateInput(name="John Smith", company="Test Corp")))
        state["records"] = [make_record("lead-1", name="Jon Smith", company="Test Inc")]

        match = score(state, self.config)["matches"][0]

        # 0.8 * 0.9 + 0.3 * 1.0 caps at 1.0 and outranks the equal company score
        assert match.match_type == MatchType.PERSON_NAME_COMPANY
        assert match.confidence == 1.0
        assert match.match_details["similarity"] == 0.9
        assert match.match_details["scores"]["COMPANY_NAME"] == 1.0

    def test_classify_node(self):
        state = capture(dict(self.initial_state))
        state["records"] = [
            make_record("lead-1", days_since_contact=10, name="John Smith", email="john@example.com"),
            make_record("lead-2", days_since_contact=200, name="Jane Smithers", company="Test Corp"),
        ]
        state = score(state, self.config)

        result = classify(state, self.config)

        severities = {m.existing_record.id: m.severity for m in result["matches"]}
        assert severities == {"lead-1": Severity.CRITICAL, "lead-2": Severity.MEDIUM}
        assert result["severity"] == Severity.CRITICAL


class TestDuplicateDetectionService:
    """End-to-end duplicate checks through the compiled workflow."""

    def setup_method(self):
        self.gateway = InMemoryRecordGateway([
            make_record(
                "lead-1",
                days_since_contact=5,
                name="Jon Smith",
                email="john@example.com",
                company="Test Corp",
                owner_id="u-2",
                owner_name="Jane Doe",
            ),
            make_record(
                "pipeline-7",
                days_since_contact=400,
                name="Robert Stone",
                phone="(555) 010 0199",
                company="Stone Works",
            ),
        ])
        self.store = memory_store()
        self.config = MatchingConfig(exclude_own_records=False)
        self.service = DuplicateDetectionService(self.gateway, self.store, self.config)

    def test_exact_email_recent_contact_is_critical(self):
        candidate = CandidateInput(name="John Smith", email="john@example.com", company="Test Corp")

        result = self.service.check_for_duplicates(candidate, "u-1", now=NOW)

        assert result.has_warning is True
        assert result.severity == Severity.CRITICAL
        assert len(result.matches) == 1
        assert result.matches[0].match_type == MatchType.EMAIL
        assert result.matches[0].existing_record.id == "lead-1"
        assert "Jane Doe" in result.message
        assert "5 days ago" in result.message

        stored = self.store.get_warning(result.warning_id)
        assert stored.severity == Severity.CRITICAL
        assert stored.triggered_by_user_id == "u-1"
        assert stored.action == DuplicateAction.LEAD_CREATE
        assert stored.decision_made is False

    def test_phone_match_without_recent_contact_is_medium(self):
        candidate = CandidateInput(name="Bob", phone="555-010-0199")

        result = self.service.check_for_duplicates(candidate, "u-1", DuplicateAction.PIPELINE_CREATE, now=NOW)

        assert result.has_warning is True
        assert result.severity == Severity.MEDIUM
        assert result.matches[0].match_type == MatchType.PHONE
        assert result.matches[0].existing_record.source_type == SourceType.PIPELINE_ITEM
        assert result.message == "1 potential duplicate(s) found. Please review before proceeding."

    def test_quiet_match_message_names_its_owner(self):
        self.gateway.add(make_record(
            "lead-5",
            days_since_contact=200,
            name="Sam Client",
            email="sam.client@acme.io",
            owner_name="Sam Lee",
        ))
        candidate = CandidateInput(name="Samuel Client", email="sam.client@acme.io")

        result = self.service.check_for_duplicates(candidate, "u-1", now=NOW)

        assert result.severity == Severity.MEDIUM
        assert result.message == (
            "1 potential duplicate(s) found, top match owned by Sam Lee. Please review before proceeding."
        )

    def test_phone_with_country_code_matches_on_trailing_digits(self):
        candidate = CandidateInput(name="Bob", phone="+1 555 010 0199")

        result = self.service.check_for_duplicates(candidate, "u-1", now=NOW)

        assert result.has_warning is True
        match = result.matches[0]
        assert match.match_type == MatchType.PHONE
        assert match.confidence == 0.8
        assert match.match_details["exact_match"] is False

    def test_no_match_creates_no_warning(self):
        candidate = CandidateInput(name="Alice Wong", email="alice@other.io", company="Other Ltd")

        result = self.service.check_for_duplicates(candidate, "u-1", now=NOW)

        assert result.has_warning is False
        assert result.warning_id is None
        assert result.matches == []
        assert self.store.list_warnings() == []

    def test_shared_free_mail_domain_is_not_a_match(self):
        self.gateway.add(make_record("lead-9", name="Other Person", email="other@gmail.com"))
        candidate = CandidateInput(name="Zed Quincy", email="zed@gmail.com")

        result = self.service.check_for_duplicates(candidate, "u-1", now=NOW)

        assert result.has_warning is False

    def test_insufficient_data_short_circuits(self):
        gateway = MagicMock()
        service = DuplicateDetectionService(gateway, self.store, self.config)

        result = service.check_for_duplicates(CandidateInput(email="john@example.com"), "u-1", now=NOW)

        assert result.has_warning is False
        gateway.find_by_exact_key.assert_not_called()
        gateway.find_by_approximate_company.assert_not_called()
        assert self.store.list_warnings() == []

    def test_gateway_failure_fails_open(self):
        gateway = MagicMock()
        gateway.find_by_exact_key.side_effect = InfrastructureError("CRM lookup /leads failed")
        service = DuplicateDetectionService(gateway, self.store, self.config)

        result = service.check_for_duplicates(
            CandidateInput(name="John Smith", email="john@example.com"), "u-1", now=NOW
        )

        assert result.has_warning is False
        assert result.matches == []

    def test_store_failure_fails_open(self):
        store = MagicMock()
        store.create_warning.side_effect = InfrastructureError("Warning store create failed")
        service = DuplicateDetectionService(self.gateway, store, self.config)

        result = service.check_for_duplicates(
            CandidateInput(name="John Smith", email="john@example.com"), "u-1", now=NOW
        )

        assert result.has_warning is False
        store.create_warning.assert_called_once()

    def test_record_found_by_both_lookups_yields_one_match(self):
        candidate = CandidateInput(name="Jon Smith", email="john@example.com", company="Test Corp")

        result = self.service.check_for_duplicates(candidate, "u-1", now=NOW)

        assert [m.existing_record.id for m in result.matches] == ["lead-1"]

    def test_own_records_excluded_when_configured(self):
        service = DuplicateDetectionService(self.gateway, self.store, MatchingConfig(exclude_own_records=True))
        candidate = CandidateInput(name="John Smith", email="john@example.com")

        result = service.check_for_duplicates(candidate, "u-2", now=NOW)

        assert result.has_warning is False

    def test_check_duplicates_validates_input(self):
        with pytest.raises(DuplicateValidationError):
            self.service.check_duplicates({"name": "John Smith", "email": "not-an-email"}, "u-1")

        with pytest.raises(DuplicateValidationError):
            self.service.check_duplicates({}, "u-1")

        with pytest.raises(DuplicateValidationError):
            self.service.check_duplicates({"name": "John Smith", "company": "Acme"}, "u-1", "DELETE")

        # Whitespace is not an identifying value
        with pytest.raises(DuplicateValidationError):
            self.service.check_duplicates({"name": "   ", "company": " "}, "u-1")

    def test_check_duplicates_accepts_plain_dict(self):
        result = self.service.check_duplicates(
            {"name": "John Smith", "email": "john@example.com"}, "u-1", "LEAD_UPDATE"
        )

        assert result.has_warning is True
        assert self.store.get_warning(result.warning_id).action == DuplicateAction.LEAD_UPDATE
