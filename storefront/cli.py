# storefront/cli.py
import click
from flask.cli import with_appcontext

from .services import coupon_service
from .services.carrier import get_carrier
from .services.order_service import OrderOrchestrator


@click.command("create-coupon")
@with_appcontext
@click.option("--code", required=True)
@click.option("--type", "discount_type", type=click.Choice(["percentage", "fixed"]), default="percentage")
@click.option("--value", required=True)
@click.option("--min-order", "min_order_amount", default=None)
@click.option("--max-discount", default=None)
@click.option("--usage-limit", type=int, default=None)
@click.option("--valid-from", default=None, help="YYYY-MM-DD")
@click.option("--valid-until", default=None, help="YYYY-MM-DD")
@click.option("--description", default=None)
def create_coupon(code, discount_type, value, min_order_amount, max_discount, usage_limit, valid_from, valid_until, description):
    try:
        c = coupon_service.create_coupon({
            "code": code,
            "discount_type": discount_type,
            "discount_value": value,
            "min_order_amount": min_order_amount,
            "max_discount": max_discount,
            "usage_limit": usage_limit,
            "valid_from": valid_from,
            "valid_until": valid_until,
            "description": description,
        })
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Coupon created: {c.id} {c.code}")


@click.command("provision-shipments")
@with_appcontext
@click.option("--limit", type=int, default=100, show_default=True)
def provision_shipments(limit):
    """Retry carrier booking for confirmed orders left unprovisioned."""
    orchestrator = OrderOrchestrator.from_app()
    pending = [o.id for o in orchestrator.unprovisioned_orders(limit)]
    if not pending:
        click.echo("No unprovisioned orders")
        return

    booked = 0
    for order_id in pending:
        result = orchestrator.provision_shipment(order_id)
        if result is not None and result.ok:
            booked += 1
            click.echo(f"order {order_id}: booked")
        elif result is not None:
            click.echo(f"order {order_id}: {result.kind.value} - {result.message}")
        else:
            click.echo(f"order {order_id}: skipped, already claimed or no longer eligible")
    click.echo(f"Booked {booked}/{len(pending)}")


@click.command("refresh-carrier-token")
@with_appcontext
def refresh_carrier_token():
    result = get_carrier().refresh_token()
    if not result.ok:
        raise click.ClickException(f"{result.kind.value}: {result.message}")
    click.echo("Carrier token refreshed")


def register_cli(app):
    app.cli.add_command(create_coupon)
    app.cli.add_command(provision_shipments)
    app.cli.add_command(refresh_carrier_token)
