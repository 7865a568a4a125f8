"""
Flask CLI commands.

    flask --app main init-db
    flask --app main create-user admin@example.com --role admin
    flask --app main appointments edit 12 --status confirmed --date 2024-06-01 --time 14:30
    flask --app main appointments complete 12 --service-id 3 --use 5=2 --use 7=0.5
"""
import asyncio

import bcrypt
import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext
from sqlalchemy import select

from app.extensions import db
from app.models import USER_ROLES, AuthUser, Base
from app.services.api_client import CredentialsTokenProvider, GroomingApiClient
from app.services.appointment_workflow import AppointmentWorkflow, WorkflowContext

appointments_cli = AppGroup("appointments", help="Edit and complete appointments.")


@click.command("init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first.")
@with_appcontext
def init_db_command(drop):
    """Create all database tables."""
    if drop:
        Base.metadata.drop_all(bind=db.engine)
    Base.metadata.create_all(bind=db.engine)
    click.echo("Database tables created")


@click.command("create-user")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice(USER_ROLES), default="staff", show_default=True)
@with_appcontext
def create_user_command(email, password, role):
    """Create a login for the API."""
    if db.session.scalar(select(AuthUser).where(AuthUser.email == email)):
        raise click.ClickException(f"User {email} already exists")

    user = AuthUser(
        email=email,
        password_hash=bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"Created {role} user {email} (id {user.id})")


def _parse_usage(values):
    consumables = {}
    for value in values:
        item_id, sep, quantity = value.partition("=")
        if not sep:
            raise click.BadParameter(f"expected ITEM_ID=QUANTITY, got '{value}'")
        try:
            consumables[item_id.strip()] = float(quantity)
        except ValueError:
            raise click.BadParameter(f"quantity for item {item_id} is not a number")
    return consumables


async def _run_workflow(config, operation):
    api = GroomingApiClient(
        config["API_BASE_URL"],
        CredentialsTokenProvider(config.get("API_EMAIL"), config.get("API_PASSWORD")),
        timeout=config.get("API_TIMEOUT"),
    )
    async with api:
        context = WorkflowContext(
            api=api,
            current_user=config.get("API_EMAIL") or "cli",
            timezone=config.get("BUSINESS_TIMEZONE", "UTC"),
        )
        return await operation(AppointmentWorkflow(context))


def _report(result):
    note = result.notification
    message = f"{note.title}: {note.description}"
    if result.ok:
        click.echo(message)
    else:
        raise click.ClickException(message)


@appointments_cli.command("edit")
@click.argument("appointment_id")
@click.option("--status", required=True)
@click.option("--date", "appointment_date", required=True, help="YYYY-MM-DD")
@click.option("--time", "appointment_time", required=True, help="HH:MM")
@click.option("--groomer", "groomer_id", default=None)
@click.option("--service", "services", multiple=True, help="Service id; repeat for several.")
@click.option("--notes", default=None)
def edit_appointment_command(
    appointment_id, status, appointment_date, appointment_time, groomer_id, services, notes
):
    """Edit an appointment through the API."""
    request = {
        "appointmentId": appointment_id,
        "status": status,
        "notes": notes,
        "appointmentDate": appointment_date,
        "appointmentTime": appointment_time,
        "groomerId": groomer_id,
        "services": list(services) if services else None,
    }
    result = asyncio.run(
        _run_workflow(current_app.config, lambda wf: wf.edit_appointment(request))
    )
    _report(result)


@appointments_cli.command("complete")
@click.argument("appointment_id")
@click.option("--service-id", required=True)
@click.option("--use", "usage", multiple=True, help="ITEM_ID=QUANTITY; repeat for several.")
@click.option(
    "--defaults", is_flag=True, help="Start from the service's configured consumables."
)
def complete_appointment_command(appointment_id, service_id, usage, defaults):
    """Record consumable usage for a finished appointment."""
    overrides = _parse_usage(usage)

    async def operation(workflow):
        consumables = {}
        if defaults:
            consumables = {
                str(k): v for k, v in (await workflow.default_consumables(service_id)).items()
            }
        consumables.update(overrides)
        return await workflow.complete_appointment(
            {
                "appointmentId": appointment_id,
                "serviceId": service_id,
                "consumables": consumables,
            }
        )

    _report(asyncio.run(_run_workflow(current_app.config, operation)))


def register_cli(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_user_command)
    app.cli.add_command(appointments_cli)
