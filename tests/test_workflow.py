from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from isms_risk_cli.audit_log import AuditLogger
from isms_risk_cli.exceptions import ApiError, PreconditionError, WorkflowError
from isms_risk_cli.models.evaluation import (
    AssessmentStage,
    EvaluationSession,
    SummaryStage,
    TreatmentStage,
)
from isms_risk_cli.organization import OrganizationContext
from isms_risk_cli.risks import RiskRegister
from isms_risk_cli.threats import ThreatCatalog
from isms_risk_cli.workflow import RiskEvaluationWorkflow, build_risk_values

ORG_ID = "org-1"


def _seed_threat(backend) -> None:
    backend.insert("threat_library", {
        "threat_id": "CYB-001",
        "name": "Ransomware",
        "description": "Encryption of data with ransom demand",
        "category": "Cyber/Technical",
        "iso27001_controls": ["8.7", "8.13"],
        "is_custom": False,
        "organization_id": None,
    })


def _make_workflow(backend, organization, audit_log, notifier) -> RiskEvaluationWorkflow:
    threats = ThreatCatalog(backend, organization, audit_log)
    register = RiskRegister(backend, organization, audit_log)
    return RiskEvaluationWorkflow(
        backend, organization, audit_log, notifier, threats, register,
        clock=lambda: 1700000000.5,
    )


@pytest.fixture
def workflow(backend, organization, audit_log, notifier) -> RiskEvaluationWorkflow:
    _seed_threat(backend)
    return _make_workflow(backend, organization, audit_log, notifier)


def _fully_rated(workflow: RiskEvaluationWorkflow) -> EvaluationSession:
    session = workflow.start("CYB-001", asset_id="asset-9")
    session.rate_inherent(4, 5, 3, 2)
    return session


class TestStageTransitions:
    def test_starts_in_assessment(self, workflow) -> None:
        session = workflow.start("CYB-001")
        assert isinstance(session.stage, AssessmentStage)
        assert session.threat.name == "Ransomware"
        assert not session.is_editing

    def test_treatment_refused_with_missing_impacts(self, workflow) -> None:
        session = workflow.start("CYB-001")
        session.rate_inherent(probability=3, operational_impact=4)

        assert workflow.can_proceed_to_treatment(session) is False
        with pytest.raises(WorkflowError, match="all three impact dimensions"):
            workflow.advance(session)
        assert isinstance(session.stage, AssessmentStage)

    def test_summary_refused_without_controls(self, workflow) -> None:
        session = _fully_rated(workflow)
        workflow.advance(session)
        session.rate_residual(2, 2)

        assert workflow.can_proceed_to_summary(session) is False
        with pytest.raises(WorkflowError, match="at least one control"):
            workflow.advance(session)
        assert isinstance(session.stage, TreatmentStage)

    def test_summary_refused_without_residual_rating(self, workflow) -> None:
        session = _fully_rated(workflow)
        workflow.advance(session)
        session.toggle_control("8.7")
        session.rate_residual(probability=2)

        assert workflow.can_proceed_to_summary(session) is False

    def test_forward_and_back(self, workflow) -> None:
        session = _fully_rated(workflow)
        assert isinstance(workflow.advance(session), TreatmentStage)
        session.toggle_control("8.7")
        session.rate_residual(2, 2)
        assert isinstance(workflow.advance(session), SummaryStage)

        with pytest.raises(WorkflowError):
            workflow.advance(session)

        assert isinstance(workflow.back(session), TreatmentStage)
        assert isinstance(workflow.back(session), AssessmentStage)
        assert isinstance(workflow.back(session), AssessmentStage)
        assert session.ratings.probability == 4
        assert session.selected_controls == ["8.7"]

    def test_toggle_control(self, workflow) -> None:
        session = workflow.start("CYB-001")
        session.toggle_control("8.7")
        session.toggle_control("5.1")
        session.toggle_control("8.7")
        assert session.selected_controls == ["5.1"]

    def test_close_discards_draft(self, workflow) -> None:
        session = _fully_rated(workflow)
        session.toggle_control("8.7")
        workflow.close(session)
        assert session.closed is True
        assert session.ratings.probability is None
        assert session.selected_controls == []


class TestBuildRiskValues:
    def test_worst_impact_drives_inherent_score(self, workflow) -> None:
        values = build_risk_values(_fully_rated(workflow))
        assert values["inherent_probability"] == "4"
        assert values["inherent_impact"] == "5"
        assert values["inherent_risk_score"] == 20
        assert values["inherent_risk_level"] == "Critical"
        assert values["status"] == "Valutato"

    def test_new_risk_carries_threat_fields(self, workflow) -> None:
        values = build_risk_values(_fully_rated(workflow))
        assert values["name"] == "Ransomware"
        assert values["threat_id"] == "CYB-001"
        assert values["asset_id"] == "asset-9"
        assert values["risk_type"] == "scenario"

    def test_partial_residual_is_not_written(self, workflow) -> None:
        session = _fully_rated(workflow)
        session.rate_residual(probability=2)
        values = build_risk_values(session)
        assert values["residual_probability"] is None
        assert values["residual_impact"] is None
        assert values["residual_risk_score"] is None
        assert values["residual_risk_level"] is None

    def test_residual_written_together(self, workflow) -> None:
        session = _fully_rated(workflow)
        session.treatment.plan = "Offline backups"
        session.rate_residual(2, 3)
        values = build_risk_values(session)
        assert values["residual_probability"] == "2"
        assert values["residual_impact"] == "3"
        assert values["residual_risk_score"] == 6
        assert values["residual_risk_level"] == "Low"
        assert values["status"] == "In trattamento"

    def test_unrated_risk_has_no_score(self, workflow) -> None:
        values = build_risk_values(workflow.start("CYB-001"))
        assert values["inherent_risk_score"] is None
        assert values["inherent_risk_level"] is None
        assert values["status"] == "Identificato"


class TestQuickSave:
    def test_quick_save_from_assessment_closes(self, workflow, backend, notifier) -> None:
        session = workflow.start("CYB-001")
        session.rate_inherent(probability=3, operational_impact=4)

        outcome = workflow.handle_submit(session, quick_save=True)

        assert outcome.saved is True
        assert outcome.closed is True
        assert session.closed is True
        rows = backend.rows("risks")
        assert len(rows) == 1
        assert rows[0]["status"] == "Valutato"
        assert rows[0]["risk_id"] == "RISK-1700000000500"
        assert rows[0]["organization_id"] == ORG_ID
        assert rows[0]["scope"] == "Organizzazione"
        notifier.success.assert_called_once()

    def test_quick_save_from_treatment_stays_open(self, workflow, backend) -> None:
        session = _fully_rated(workflow)
        workflow.advance(session)
        session.toggle_control("8.7")

        outcome = workflow.handle_submit(session, quick_save=True)

        assert outcome.saved is True
        assert outcome.closed is False
        assert isinstance(session.stage, TreatmentStage)
        assert session.is_editing

        session.treatment.plan = "Offline backups"
        session.rate_residual(2, 2)
        workflow.handle_submit(session, quick_save=True)

        rows = backend.rows("risks")
        assert len(rows) == 1
        assert rows[0]["status"] == "In trattamento"
        assert rows[0]["residual_risk_score"] == 4

        actions = [e["action"] for e in backend.rows("audit_logs")]
        assert actions == ["create", "update"]

    def test_quick_save_refused_from_summary(self, workflow, backend, notifier) -> None:
        session = _fully_rated(workflow)
        session.stage = SummaryStage()

        outcome = workflow.handle_submit(session, quick_save=True)

        assert outcome.saved is False
        assert backend.rows("risks") == []
        notifier.error.assert_called_once()


class TestFullSave:
    def test_full_save_from_summary(self, workflow, backend) -> None:
        session = _fully_rated(workflow)
        workflow.advance(session)
        session.toggle_control("8.7")
        session.treatment.plan = "Offline backups"
        session.rate_residual(2, 2)
        workflow.advance(session)

        outcome = workflow.handle_submit(session, quick_save=False)

        assert outcome.saved is True
        assert session.stage == SummaryStage(saved=True)
        row = backend.rows("risks")[0]
        assert row["related_controls"] == ["8.7"]
        assert row["treatment_strategy"] == "Mitigazione"
        assert row["inherent_risk_score"] == 20
        assert row["residual_risk_level"] == "Low"

    def test_full_save_refused_outside_summary(self, workflow, backend) -> None:
        session = _fully_rated(workflow)
        outcome = workflow.handle_submit(session, quick_save=False)
        assert outcome.saved is False
        assert "summary stage" in (outcome.error or "")
        assert backend.rows("risks") == []

    def test_closed_session_cannot_save(self, workflow, backend) -> None:
        session = _fully_rated(workflow)
        workflow.close(session)
        assert workflow.handle_submit(session, quick_save=True).saved is False
        assert backend.rows("risks") == []


class TestSaveFailures:
    def test_no_organization_makes_no_insert(self, backend, audit_log, notifier) -> None:
        _seed_threat(backend)
        workflow = _make_workflow(backend, OrganizationContext(None), audit_log, notifier)
        session = _fully_rated(workflow)

        outcome = workflow.handle_submit(session, quick_save=True)

        assert outcome.saved is False
        assert "No organization selected" in (outcome.error or "")
        assert backend.rows("risks") == []
        notifier.error.assert_called_once()
        assert notifier.error.call_args[0][0] == "Errore nel salvataggio"

    def test_backend_error_keeps_session(self, workflow, backend, notifier) -> None:
        session = _fully_rated(workflow)
        workflow.advance(session)
        session.toggle_control("8.7")

        with patch.object(backend, "insert", side_effect=ApiError("Backend server error (503).")):
            outcome = workflow.handle_submit(session, quick_save=True)

        assert outcome.saved is False
        assert outcome.error == "Backend server error (503)."
        assert session.closed is False
        assert isinstance(session.stage, TreatmentStage)
        assert session.ratings.operational_impact == 5
        assert session.selected_controls == ["8.7"]
        assert session.risk is None

    def test_audit_failure_does_not_fail_save(self, backend, organization, notifier) -> None:
        _seed_threat(backend)
        audit_log = MagicMock()
        audit_log.log_event.side_effect = RuntimeError("audit down")
        workflow = _make_workflow(backend, organization, audit_log, notifier)
        session = _fully_rated(workflow)

        outcome = workflow.handle_submit(session, quick_save=True)

        assert outcome.saved is True
        assert len(backend.rows("risks")) == 1


class TestEdit:
    def _saved_risk_id(self, workflow) -> str:
        session = _fully_rated(workflow)
        workflow.advance(session)
        session.toggle_control("8.7")
        session.treatment.plan = "Offline backups"
        session.rate_residual(2, 3)
        workflow.handle_submit(session, quick_save=True)
        assert session.risk is not None and session.risk.id is not None
        return session.risk.id

    def test_edit_loads_stored_impact_into_every_dimension(self, workflow) -> None:
        risk_id = self._saved_risk_id(workflow)

        session = workflow.edit(risk_id)

        assert session.is_editing
        assert session.ratings.probability == 4
        assert session.ratings.operational_impact == 5
        assert session.ratings.economic_impact == 5
        assert session.ratings.legal_impact == 5
        assert session.selected_controls == ["8.7"]
        assert session.treatment.plan == "Offline backups"
        assert session.treatment.residual_probability == 2
        assert session.treatment.residual_impact == 3
        assert session.asset_id == "asset-9"

    def test_edit_save_updates_in_place(self, workflow, backend) -> None:
        risk_id = self._saved_risk_id(workflow)
        session = workflow.edit(risk_id)
        session.rate_inherent(2, 2, 2, 2)

        workflow.handle_submit(session, quick_save=True)

        rows = backend.rows("risks")
        assert len(rows) == 1
        assert rows[0]["organization_id"] == ORG_ID
        assert rows[0]["risk_id"] == "RISK-1700000000500"
        assert rows[0]["inherent_risk_score"] == 4
        assert rows[0]["name"] == "Ransomware"

    def test_edit_with_missing_threat(self, workflow, backend) -> None:
        risk_id = self._saved_risk_id(workflow)
        backend.tables["threat_library"] = []

        session = workflow.edit(risk_id)

        assert session.threat.threat_id == "CYB-001"
        assert session.threat.name == "Ransomware"


def test_edit_is_limited_to_the_owning_organization(workflow, backend, notifier) -> None:
    session = _fully_rated(workflow)
    workflow.handle_submit(session, quick_save=True)
    assert session.risk is not None

    other = OrganizationContext("org-2")
    foreign = _make_workflow(backend, other, AuditLogger(backend, other), notifier)

    with pytest.raises(PreconditionError, match="not found"):
        foreign.edit(session.risk.id)
