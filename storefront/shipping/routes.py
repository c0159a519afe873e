# storefront/shipping/routes.py
from flask import current_app, request

from ..extensions import db
from ..model import Order
from ..services.carrier import get_carrier
from ..services.gateway import signatures_match
from ..services.order_service import OrderOrchestrator
from ..utils.api import ok, err, result_error
from ..utils.decorators import role_required
from . import bp


def _orchestrator():
    return OrderOrchestrator.from_app()


def _carrier_ok(message, result, **extra):
    if not result.ok:
        return result_error(result)
    return ok(message, {"carrier": result.data, **extra})


def _find_order(ref):
    """Order by order number (ORD-...) or numeric id."""
    ref = str(ref or "").strip()
    if not ref:
        return None
    o = Order.query.filter_by(order_number=ref.upper()).first()
    if o is None and ref.isdigit():
        o = db.session.get(Order, int(ref))
    return o


def _lane_args():
    delivery = (request.args.get("delivery_pincode") or "").strip()
    if not delivery:
        raise ValueError("delivery_pincode is required")
    try:
        weight = float(request.args.get("weight", 0.5))
    except ValueError:
        raise ValueError("weight must be numeric")
    if weight <= 0:
        raise ValueError("weight must be > 0")
    pickup = request.args.get("pickup_pincode") or current_app.config["CARRIER_PICKUP_PINCODE"]
    cod = (request.args.get("cod") or "").lower() in ("1", "true", "yes")
    return pickup, delivery, weight, cod


def _order_id_from_body():
    data = request.get_json(silent=True) or {}
    try:
        return int(data.get("order_id")), data
    except (TypeError, ValueError):
        raise ValueError("order_id is required")


# ---- customer ---------------------------------------------------------------

@bp.get("/check")
def check_serviceability():
    result = get_carrier().check_serviceability(*_lane_args())
    return _carrier_ok("Serviceability", result)


@bp.get("/couriers")
def couriers():
    result = get_carrier().list_couriers(*_lane_args())
    return _carrier_ok("Couriers", result)


@bp.get("/track/<order_ref>")
def track_order(order_ref):
    o = _find_order(order_ref)
    if not o:
        return err("order not found", 404)
    result = _orchestrator().track(o.id)
    if not result.ok:
        return result_error(result)
    return ok("Tracking", {
        "order_number": o.order_number,
        "status": o.status,
        "awb_code": o.awb_code,
        "courier_name": o.courier_name,
        "carrier": result.data,
    })


@bp.post("/events")
def carrier_events():
    """Status push from the carrier: {order_id: ORD-..., current_status, awb}."""
    expected = current_app.config.get("CARRIER_WEBHOOK_TOKEN")
    if expected and not signatures_match(expected, request.headers.get("X-Api-Key")):
        return err("Invalid webhook token", 401)

    data = request.get_json(silent=True) or {}
    status = data.get("current_status") or data.get("shipment_status")
    if not status:
        raise ValueError("current_status is required")

    o = _find_order(data.get("order_id"))
    if o is None and data.get("awb"):
        o = Order.query.filter_by(awb_code=str(data["awb"])).first()
    if not o:
        return err("order not found", 404)

    result = _orchestrator().on_shipment_event(o.id, status)
    if not result.ok:
        return result_error(result)
    return ok("Event processed", {"order_id": o.id, "status": result.order.status, "changed": result.changed})


# ---- admin --------------------------------------------------------------------

@bp.post("/create-shipment")
@role_required("admin")
def create_shipment():
    order_id, _ = _order_id_from_body()
    if not db.session.get(Order, order_id):
        return err("order not found", 404)
    result = _orchestrator().provision_shipment(order_id)
    o = db.session.get(Order, order_id)
    if result is None:
        return err(f"Order is {o.status} with shipment {o.shipment_status}; nothing to book", 409)
    return _carrier_ok("Shipment created", result, order=o.as_api())


@bp.post("/generate-awb")
@role_required("admin")
def generate_awb():
    order_id, data = _order_id_from_body()
    result = _orchestrator().assign_awb(order_id, data.get("courier_id"))
    if not result.ok:
        return result_error(result)
    o = db.session.get(Order, order_id)
    return ok("AWB generated", {"awb_code": o.awb_code, "courier_name": o.courier_name, "carrier": result.data})


@bp.post("/schedule-pickup")
@role_required("admin")
def schedule_pickup():
    order_id, _ = _order_id_from_body()
    return _carrier_ok("Pickup scheduled", _orchestrator().schedule_pickup(order_id))


@bp.post("/cancel")
@role_required("admin")
def cancel_shipment():
    order_id, _ = _order_id_from_body()
    if not db.session.get(Order, order_id):
        return err("order not found", 404)
    result = _orchestrator().cancel_shipment(order_id)
    if result is None:
        return err("Shipment not found for this order", 409)
    return _carrier_ok("Shipment cancelled", result)


@bp.get("/track/awb/<awb>")
@role_required("admin")
def track_awb(awb):
    return _carrier_ok("Tracking", get_carrier().track(awb))


@bp.get("/pickup-locations")
@role_required("admin")
def pickup_locations():
    return _carrier_ok("Pickup locations", get_carrier().list_pickup_locations())


@bp.post("/returns")
@role_required("admin")
def create_return():
    data = request.get_json(silent=True) or {}
    if not data.get("order_id"):
        raise ValueError("order_id is required")
    return _carrier_ok("Return created", get_carrier().create_return(data))
