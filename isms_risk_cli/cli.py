from __future__ import annotations

import argparse
import getpass
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from isms_risk_cli.audit_log import AuditLogger
from isms_risk_cli.client import BackendClient
from isms_risk_cli.config import CONFIG_FILENAME, read_config, write_config
from isms_risk_cli.exceptions import ApiError, ConfigError, IsmsRiskError, WorkflowError
from isms_risk_cli.formatters.base import BaseFormatter
from isms_risk_cli.formatters.json_formatter import JsonFormatter
from isms_risk_cli.formatters.yaml_formatter import YamlFormatter
from isms_risk_cli.models.config import AppConfig
from isms_risk_cli.models.evaluation import AssessmentStage, EvaluationSession, SummaryStage, TreatmentStage
from isms_risk_cli.models.risks import RISK_STATUSES
from isms_risk_cli.models.tasks import ImprovementActionForm, TrainingRecordForm
from isms_risk_cli.models.threats import NIS2_INCIDENT_TYPES, THREAT_CATEGORIES, Threat, ThreatFilters
from isms_risk_cli.notifications import Notifier
from isms_risk_cli.organization import OrganizationContext
from isms_risk_cli.risks import RiskRegister
from isms_risk_cli.scoring import (
    IMPACT_SCALE,
    LEVELS,
    PROBABILITY_SCALE,
    classify,
    inherent_score,
    reduction_percentage,
    residual_score,
)
from isms_risk_cli.suggestions import (
    DISPLAY_LIMIT,
    AuditPlanner,
    SmartSuggestionAggregator,
    propose_audit,
)
from isms_risk_cli.tasks import DownstreamTaskGenerator
from isms_risk_cli.threats import SUGGESTED_CONTROLS, ThreatCatalog
from isms_risk_cli.workflow import RiskEvaluationWorkflow

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

CLEAR_INPUT = "-"


@dataclass
class Services:
    notifier: Notifier
    organization: OrganizationContext
    threats: ThreatCatalog
    register: RiskRegister
    workflow: RiskEvaluationWorkflow
    tasks: DownstreamTaskGenerator
    suggestions: SmartSuggestionAggregator
    planner: AuditPlanner


def build_services(config: AppConfig, notifier: Optional[Notifier] = None) -> Services:
    client = BackendClient(config)
    notifier = notifier or Notifier()
    organization = OrganizationContext(config.organization_id)
    audit_log = AuditLogger(client, organization)
    threats = ThreatCatalog(client, organization, audit_log)
    register = RiskRegister(client, organization, audit_log)
    return Services(
        notifier=notifier,
        organization=organization,
        threats=threats,
        register=register,
        workflow=RiskEvaluationWorkflow(
            client, organization, audit_log, notifier, threats, register,
        ),
        tasks=DownstreamTaskGenerator(client, organization, audit_log),
        suggestions=SmartSuggestionAggregator(client),
        planner=AuditPlanner(client, organization, audit_log),
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="isms-risk",
        description="Risk evaluation and audit planning for ISO 27001 / NIS2 programs.",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--init",
        metavar="API_URL",
        help="Initialize configuration with the backend API URL.",
    )
    group.add_argument("--threats", action="store_true", help="List the threat catalog.")
    group.add_argument("--add-threat", action="store_true", help="Create a custom threat.")
    group.add_argument("--delete-threat", metavar="THREAT_ID", help="Delete a custom threat.")
    group.add_argument(
        "--seed-catalog", action="store_true", help="Load the built-in shared threat catalog.",
    )
    group.add_argument(
        "--evaluate", metavar="THREAT_ID", help="Evaluate a threat as a new risk.",
    )
    group.add_argument("--edit-risk", metavar="RISK_ID", help="Re-evaluate an existing risk.")
    group.add_argument("--risks", action="store_true", help="List the risk register.")
    group.add_argument("--delete-risk", metavar="RISK_ID", help="Delete a risk.")
    group.add_argument(
        "--suggestions", action="store_true", help="Suggest the scope of the next audit.",
    )

    filters = parser.add_argument_group("filters")
    filters.add_argument("--category", choices=THREAT_CATEGORIES, help="Threat category.")
    filters.add_argument("--nis2", choices=NIS2_INCIDENT_TYPES, help="NIS2 incident type.")
    filters.add_argument("--sector", help="Keep threats relevant to this sector.")
    filters.add_argument("--search", help="Free-text search.")
    filters.add_argument("--level", choices=LEVELS, help="Inherent risk level.")
    filters.add_argument("--status", choices=RISK_STATUSES, help="Risk status.")

    parser.add_argument("--asset", metavar="ASSET_ID", help="Asset evaluated by --evaluate.")
    parser.add_argument(
        "--plan-audit", metavar="DATE",
        help="With --suggestions, plan an internal audit on DATE (YYYY-MM-DD).",
    )
    parser.add_argument("--auditor", default="", help="Auditor name for --plan-audit.")
    parser.add_argument(
        "--yes", action="store_true", help="Do not ask for confirmation before deleting.",
    )
    parser.add_argument(
        "--format", choices=("yaml", "json"), default="yaml", help="Listing output format.",
    )
    parser.add_argument("--output", type=Path, help="Write the listing to a file.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


def _run_init(api_url: str) -> None:
    if not api_url.startswith("https://"):
        raise ConfigError("API URL must start with https://")

    api_key = getpass.getpass("Enter your API key: ")
    if not api_key.strip():
        raise ConfigError("API key cannot be empty.")

    organization_id = input("Enter your organization ID (leave empty to skip): ")

    config = AppConfig(
        api_url=api_url,
        api_key=api_key.strip(),
        organization_id=organization_id.strip() or None,
    )
    write_config(Path.cwd(), config)
    print(f"Configuration saved to {CONFIG_FILENAME}")


def _emit(data: Any, args: argparse.Namespace) -> None:
    formatter: BaseFormatter = JsonFormatter() if args.format == "json" else YamlFormatter()
    if args.output:
        formatter.write(data, args.output)
        print(f"Written to {args.output}")
    else:
        print(formatter.render(data), end="")


def _confirm(question: str) -> bool:
    while True:
        answer = input(f"{question} [Yes/No] ").strip().lower()
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False


def _run_threats(services: Services, args: argparse.Namespace) -> None:
    threats = services.threats.list_threats(ThreatFilters(
        category=args.category,
        nis2_type=args.nis2,
        sector=args.sector,
        search_text=args.search,
    ))
    _emit(threats, args)


def _run_add_threat(services: Services) -> None:
    name = input("Name: ")
    description = input("Description: ")
    for index, category in enumerate(THREAT_CATEGORIES, start=1):
        print(f"  {index}. {category}")
    category = _pick(input("Category number: "), THREAT_CATEGORIES)
    for index, nis2_type in enumerate(NIS2_INCIDENT_TYPES, start=1):
        print(f"  {index}. {nis2_type}")
    nis2_type = _pick(input("NIS2 incident type number (optional): "), NIS2_INCIDENT_TYPES)
    print("Suggested controls: " + ", ".join(SUGGESTED_CONTROLS))
    controls = _split_list(input("ISO 27001 controls (comma separated): "))

    threat = services.threats.create_custom_threat(
        name, description, category or "", nis2_type, controls,
    )
    services.notifier.success("Custom threat created", f"{threat.threat_id} - {threat.name}")


def _run_delete_threat(services: Services, threat_id: str, assume_yes: bool) -> None:
    def confirm(threat: Threat) -> bool:
        return assume_yes or _confirm(f"Delete custom threat {threat.threat_id} ({threat.name})?")

    if services.threats.delete_custom_threat(threat_id, confirm):
        services.notifier.success("Threat deleted", threat_id)
    else:
        print("Deletion cancelled.")


def _run_risks(services: Services, args: argparse.Namespace) -> None:
    risks = services.register.list_risks(
        level=args.level, status=args.status, search=args.search,
    )
    _emit(risks, args)


def _run_delete_risk(services: Services, risk_id: str, assume_yes: bool) -> None:
    risk = services.register.get_risk(risk_id)
    if not assume_yes and not _confirm(f"Delete risk {risk.risk_id} ({risk.name})?"):
        print("Deletion cancelled.")
        return
    services.register.delete_risk(risk_id)
    services.notifier.success("Risk deleted", risk.risk_id)


def _run_suggestions(services: Services, args: argparse.Namespace) -> None:
    organization_id = services.organization.require()
    bundle = services.suggestions.collect(organization_id)
    proposal = propose_audit(bundle)
    _emit({"suggestions": bundle.display(DISPLAY_LIMIT), "proposed_audit": proposal}, args)

    if args.plan_audit:
        row = services.planner.plan(proposal, args.plan_audit, args.auditor)
        services.notifier.success(
            "Audit planned", f"{row.get('audit_code') or row.get('id')} - {args.plan_audit}",
        )


def _pick(raw: str, options: tuple) -> Optional[str]:
    raw = raw.strip()
    if raw.isdigit() and 1 <= int(raw) <= len(options):
        return options[int(raw) - 1]
    return None


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _prompt_rating(label: str, scale: Dict[int, tuple], current: Optional[int]) -> Optional[int]:
    hint = ", ".join(f"{value}={name}" for value, (name, _) in scale.items())
    while True:
        suffix = f" [{current}, - to clear]" if current else ""
        raw = input(f"{label} ({hint}){suffix}: ").strip()
        if not raw:
            return current
        if raw == CLEAR_INPUT:
            return None
        if raw.isdigit() and int(raw) in scale:
            return int(raw)
        print("Enter a number between 1 and 5.")


def _prompt_text(label: str, current: Optional[str]) -> Optional[str]:
    suffix = f" [{current}, - to clear]" if current else ""
    raw = input(f"{label}{suffix}: ").strip()
    if raw == CLEAR_INPUT:
        return None
    return raw or current


def _edit_assessment(session: EvaluationSession) -> None:
    threat = session.threat
    if threat.typical_probability and threat.typical_impact:
        print(
            f"Typical values: probability {threat.typical_probability}, "
            f"impact {threat.typical_impact}"
        )
    r = session.ratings
    session.rate_inherent(
        probability=_prompt_rating("Probabilità", PROBABILITY_SCALE, r.probability),
        operational_impact=_prompt_rating("Impatto operativo", IMPACT_SCALE, r.operational_impact),
        economic_impact=_prompt_rating("Impatto economico", IMPACT_SCALE, r.economic_impact),
        legal_impact=_prompt_rating("Impatto legale", IMPACT_SCALE, r.legal_impact),
    )


def _edit_treatment(session: EvaluationSession) -> None:
    recommended = session.threat.iso27001_controls
    if recommended:
        for control_id in recommended:
            mark = "x" if control_id in session.selected_controls else " "
            print(f"  [{mark}] {control_id}")
    for control_id in _split_list(input("Toggle controls (comma separated): ")):
        session.toggle_control(control_id)

    t = session.treatment
    t.plan = _prompt_text("Piano di trattamento", t.plan) or ""
    cost = _prompt_text("Costo stimato (EUR)", str(t.cost) if t.cost is not None else None)
    try:
        t.cost = float(cost) if cost else None
    except ValueError:
        print("Cost ignored, not a number.")
    t.deadline = _prompt_text("Scadenza (YYYY-MM-DD)", t.deadline)
    t.responsible = _prompt_text("Responsabile", t.responsible)
    session.rate_residual(
        probability=_prompt_rating("Probabilità residua", PROBABILITY_SCALE, t.residual_probability),
        impact=_prompt_rating("Impatto residuo", IMPACT_SCALE, t.residual_impact),
    )


def _print_scores(session: EvaluationSession) -> None:
    r = session.ratings
    inherent = inherent_score(r.probability, r.operational_impact, r.economic_impact, r.legal_impact)
    if inherent is not None:
        print(f"Inherent risk: {inherent} ({classify(inherent)})")
    residual = residual_score(session.treatment.residual_probability, session.treatment.residual_impact)
    if residual is not None:
        reduction = reduction_percentage(inherent, residual)
        line = f"Residual risk: {residual} ({classify(residual)})"
        if reduction is not None:
            line += f", reduction {reduction}%"
        print(line)


def _create_task(services: Services, session: EvaluationSession, kind: str) -> None:
    risk = session.risk
    if risk is None:
        services.notifier.error("Save the risk first")
        return
    try:
        if kind == "action":
            action = services.tasks.create_improvement_action(
                risk, ImprovementActionForm.from_risk(risk),
            )
            services.notifier.success(
                "Azione di miglioramento creata", f"{action.action_code} - {action.title}",
            )
        else:
            record = services.tasks.create_training_record(
                risk, TrainingRecordForm.from_risk(risk),
            )
            services.notifier.success("Piano di formazione creato", record.training_title)
    except IsmsRiskError as exc:
        logger.error("Creating %s for risk %s failed: %s", kind, risk.risk_id, exc)
        services.notifier.error("Errore nella creazione", str(exc))


def run_evaluation(services: Services, session: EvaluationSession) -> None:
    workflow = services.workflow
    actions: Dict[str, Callable[[], Any]]
    while not session.closed:
        stage = session.stage
        print(f"\n== {session.threat.name} :: {stage.name}")
        _print_scores(session)

        if isinstance(stage, AssessmentStage):
            actions = {
                "e": lambda: _edit_assessment(session),
                "n": lambda: workflow.advance(session),
                "s": lambda: workflow.handle_submit(session, quick_save=True),
            }
            menu = "[e]dit, [n]ext, [s]ave, [q]uit"
        elif isinstance(stage, TreatmentStage):
            actions = {
                "e": lambda: _edit_treatment(session),
                "n": lambda: workflow.advance(session),
                "b": lambda: workflow.back(session),
                "s": lambda: workflow.handle_submit(session, quick_save=True),
            }
            menu = "[e]dit, [n]ext, [b]ack, [s]ave, [q]uit"
        elif isinstance(stage, SummaryStage) and stage.saved:
            actions = {
                "a": lambda: _create_task(services, session, "action"),
                "t": lambda: _create_task(services, session, "training"),
            }
            menu = "create improvement [a]ction, create [t]raining, [q]uit"
        else:
            print("Controls: " + ", ".join(session.selected_controls))
            actions = {
                "f": lambda: workflow.handle_submit(session, quick_save=False),
                "b": lambda: workflow.back(session),
            }
            menu = "[f]inal save, [b]ack, [q]uit"

        choice = input(f"{menu}: ").strip().lower()
        if choice == "q":
            workflow.close(session)
        elif choice in actions:
            try:
                actions[choice]()
            except WorkflowError as exc:
                print(str(exc))


def _dispatch(services: Services, args: argparse.Namespace) -> None:
    if args.threats:
        _run_threats(services, args)
    elif args.add_threat:
        _run_add_threat(services)
    elif args.delete_threat:
        _run_delete_threat(services, args.delete_threat, args.yes)
    elif args.seed_catalog:
        count = services.threats.seed_catalog()
        print(f"Seeded {count} shared threats.")
    elif args.evaluate:
        run_evaluation(services, services.workflow.start(args.evaluate, args.asset))
    elif args.edit_risk:
        run_evaluation(services, services.workflow.edit(args.edit_risk))
    elif args.risks:
        _run_risks(services, args)
    elif args.delete_risk:
        _run_delete_risk(services, args.delete_risk, args.yes)
    elif args.suggestions:
        _run_suggestions(services, args)


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING, format=_LOG_FORMAT,
    )

    if args.init:
        _run_init(args.init)
        return
    if not any((
        args.threats, args.add_threat, args.delete_threat, args.seed_catalog,
        args.evaluate, args.edit_risk, args.risks, args.delete_risk, args.suggestions,
    )):
        parser.print_help()
        return

    services = build_services(read_config(Path.cwd()))
    try:
        _dispatch(services, args)
    except ApiError as exc:
        logger.error("Request to the backend failed: %s", exc)
        raise
