#!/usr/bin/env python3
"""
CogniLab CLI

Command-line interface for the CogniLab laboratory information system.
"""

import os
import sys
from datetime import date
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


def setup_paths():
    """Add the project root to sys.path for imports."""
    root = Path(__file__).parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


setup_paths()

FLAG_STYLES = {"normal": "green", "high": "red", "low": "yellow"}


@click.group()
@click.version_option(version="0.1.0", prog_name="cognilab")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
              default=None, help="Logging level (default: COGNILAB_LOG_LEVEL or INFO)")
def cli(log_level: Optional[str]):
    """
    CogniLab - Laboratory Information System

    Patient registration, result entry, billing and audit logging for a
    clinical laboratory.
    """
    from cognilab.config import configure_logging

    configure_logging(log_level)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Interface to bind")
@click.option("--port", type=int, default=8000, help="Port to listen on")
@click.option("--mock", is_flag=True, help="Use the in-memory fixture store instead of Supabase")
def serve(host: str, port: int, mock: bool):
    """
    Run the HTTP API server.
    """
    if mock:
        os.environ["COGNILAB_USE_MOCK_DATA"] = "true"
        from cognilab.config import reset_lab_config
        reset_lab_config()

    from cognilab.db.store import use_mock_data
    from server import run_server

    mode = "mock data" if use_mock_data() else "Supabase"
    console.print(f"[dim]Starting CogniLab on {host}:{port} ({mode})[/dim]")
    run_server(host=host, port=port)


@cli.command()
@click.argument("section", required=False)
def catalog(section: Optional[str]):
    """
    List lab sections, tests, prices and reference ranges.
    """
    from knowledge.lab import get_catalog

    lab_catalog = get_catalog()
    sections = [section] if section else lab_catalog.sections()
    for name in sections:
        tests = lab_catalog.tests(name)
        if not tests:
            console.print(f"[yellow]No tests found in {name}[/yellow]")
            continue

        table = Table(title=name)
        table.add_column("Test")
        table.add_column("Price", justify="right")
        table.add_column("Reference Range")
        table.add_column("Unit")
        for test in tests:
            label = f"  └ {test.name}" if test.is_component else test.name
            price = f"₱{test.price:,.2f}" if test.price is not None else "[dim]-[/dim]"
            table.add_row(
                label,
                price,
                test.range.display() if test.range else "",
                test.range.unit if test.range else "",
            )
        console.print(table)


@cli.command()
@click.argument("section")
@click.argument("test_name")
@click.argument("value")
def classify(section: str, test_name: str, value: str):
    """
    Flag a result VALUE for TEST_NAME in SECTION as normal, high or low.
    """
    from knowledge.lab import get_catalog
    from cognilab.engines import classify as classify_value

    lab_catalog = get_catalog()
    flag = classify_value(value, test_name, section, lab_catalog)
    ref_range = lab_catalog.range(section, test_name)
    style = FLAG_STYLES[flag.value]
    console.print(f"[{style}]{flag.value.upper()}[/{style}]  {test_name} = {value}")
    if ref_range:
        console.print(f"[dim]Reference range: {ref_range.display()} {ref_range.unit}[/dim]")
    else:
        console.print("[dim]No reference range on file[/dim]")


@cli.command()
def demo():
    """
    Walk one patient through registration, results, billing and the report
    using the in-memory store.
    """
    from cognilab.db.fixtures import fixture_tables
    from cognilab.db.store import MemoryStore
    from cognilab.engines import LabEngine, format_amount
    from cognilab.models import Actor

    engine = LabEngine(store=MemoryStore(fixture_tables()))
    medtech = Actor(name="MedTech User", encryption_key="ENC_KEY_001", id="user-001")

    patient = engine.patients.register({
        "patient_id_no": "P-0001",
        "last_name": "Dela Cruz",
        "first_name": "Juan",
        "age": 34,
        "birthdate": "1991-06-12",
        "sex": "Male",
        "contact_no": "0917 123 4567",
        "municipality": "Quezon City",
        "province": "Metro Manila",
        "medical_history": "None",
        "medications": "None",
        "allergy": "None",
    }, actor=medtech)

    name = patient.full_name
    fbs = engine.results.create(name, "CLINICAL CHEMISTRY", "Blood Glucose", "130",
                                actor=medtech, patient_id=patient.id)
    engine.results.create_panel(name, "HEMATOLOGY", "CBC", [
        {"test_name": "Neutrophils", "value": "80"},
        {"test_name": "Lymphocytes", "value": "30"},
        {"test_name": "Monocytes", "value": "5"},
        {"test_name": "Eosinophils", "value": "2"},
        {"test_name": "Basophils", "value": "1"},
    ], actor=medtech, patient_id=patient.id)

    for _ in range(4):
        engine.results.advance(fbs.id, actor=medtech)

    for entry in engine.billing.for_patient(patient.id, name):
        engine.billing.set_status(entry.id, "paid", or_number=f"OR-{entry.id[:6].upper()}",
                                  date_paid=date.today(), actor=medtech)

    report = engine.reports.patient_report(patient.id, actor=medtech, download=True)

    console.print()
    console.print(Panel(
        f"[bold]{name}[/bold]\n"
        f"Patient ID: {patient.patient_id_no}\n"
        f"Age/Sex: {patient.age} / {patient.sex}\n"
        f"Contact: {patient.contact_no}\n"
        f"Billing: {report.billing_status.value.upper()}",
        title="Laboratory Report",
        border_style="blue",
    ))

    table = Table(title="Results")
    table.add_column("Test")
    table.add_column("Result")
    table.add_column("Reference")
    table.add_column("Flag")
    table.add_column("Status")
    for line in report.lines:
        style = FLAG_STYLES[line.flag.value]
        table.add_row(
            line.test_name,
            f"{line.result_value} {line.unit}".strip(),
            line.reference_range,
            f"[{style}]{line.flag.value}[/{style}]",
            line.status,
        )
    console.print(table)

    summary = engine.billing.aggregate()
    console.print(
        f"\n[bold]Billing:[/bold] {summary.paid_count} paid ({format_amount(summary.total_paid_amount)}), "
        f"{summary.unpaid_count} unpaid ({format_amount(summary.total_unpaid_amount)})"
    )

    audit_table = Table(title="Audit Log")
    audit_table.add_column("User")
    audit_table.add_column("Action")
    audit_table.add_column("Description")
    for entry in reversed(engine.audit.list()):
        audit_table.add_row(entry.user_name, entry.action.value, entry.description)
    console.print(audit_table)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
