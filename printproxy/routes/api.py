"""REST API endpoints for printing and printer discovery."""
import logging

from flask import Blueprint, current_app, request, jsonify
from werkzeug.exceptions import HTTPException

from printproxy.models import PrintOptions, PrintOutcome, utcnow

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

VERSION = "1.0.0"


def _services():
    return current_app.extensions["printproxy"]


def _printers_response(printers):
    return jsonify({
        "printers": [p.to_dict() for p in printers],
        "count": len(printers),
    })


def _bad_request(message: str, error: str = None):
    return jsonify(PrintOutcome.fail(message, error).to_dict()), 400


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if days:
        return f"{days}d {hours}h {minutes}m {seconds}s"
    return f"{hours}h {minutes}m {seconds}s"


@api_bp.errorhandler(Exception)
def handle_unexpected_error(e):
    """Unexpected faults become a 500 with the usual outcome shape."""
    if isinstance(e, HTTPException):
        return e
    logger.exception("Unhandled error processing %s %s", request.method, request.path)
    return jsonify(PrintOutcome.fail("Internal server error", str(e)).to_dict()), 500


# Health

@api_bp.route("/health", methods=["GET"])
def health():
    """Service health and number of online printers."""
    services = _services()
    return jsonify({
        "status": "healthy",
        "version": VERSION,
        "uptime": _format_uptime(services.uptime),
        "printersAvailable": services.registry.available_count(),
        "jobs": services.queue.stats(),
        "timestamp": utcnow().isoformat(),
    })


# Printers API

@api_bp.route("/printers", methods=["GET"])
def list_printers():
    """List known printers, refreshing the cache when it has expired."""
    return _printers_response(_services().registry.get_printers())


@api_bp.route("/printers/refresh", methods=["POST"])
def refresh_printers():
    """Force a discovery run, then list printers."""
    return _printers_response(_services().registry.refresh().printers)


@api_bp.route("/printers/<printer_id>/test", methods=["POST"])
def test_printer(printer_id):
    """Print the test page on a specific printer."""
    outcome = _services().printer_service.print_test_page(printer_id)
    return jsonify(outcome.to_dict())


# Print API

@api_bp.route("/print", methods=["POST"])
def print_content():
    """Print text content.

    Request body:
    {
        "printerIdentifier": "lan_192_168_1_50_9100",  // optional, first online printer if omitted
        "content": "Hello\\nWorld",
        "options": {"fontSize": "normal", "alignment": "center", "cutPaper": true,
                    "bold": false, "encoding": "CP866"}
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _bad_request("Invalid request body", "Expected a JSON object")

    identifier = data.get("printerIdentifier")
    if identifier is not None and not isinstance(identifier, str):
        return _bad_request("Invalid printer identifier", "printerIdentifier must be a string")

    try:
        options = PrintOptions.from_dict(data.get("options"))
    except TypeError as e:
        return _bad_request("Invalid print options", str(e))

    outcome = _services().printer_service.print(
        data.get("content"),
        printer_identifier=identifier,
        options=options,
    )
    return jsonify(outcome.to_dict())


@api_bp.route("/print/test", methods=["POST"])
def print_test():
    """Print the test page.

    The printer may be given as a ``printerId`` query argument or as
    ``printerIdentifier`` in a JSON body; otherwise the first online printer
    is used.
    """
    identifier = request.args.get("printerId")
    if not identifier:
        data = request.get_json(silent=True)
        if isinstance(data, dict):
            identifier = data.get("printerIdentifier")
    if identifier is not None and not isinstance(identifier, str):
        return _bad_request("Invalid printer identifier", "printerIdentifier must be a string")
    outcome = _services().printer_service.print_test_page(identifier)
    return jsonify(outcome.to_dict())
