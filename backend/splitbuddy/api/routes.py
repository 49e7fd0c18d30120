from __future__ import annotations

import logging
from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request

from splitbuddy.api.validators import (
    ApiValidationError,
    parse_bill_draft,
    parse_convert_request,
)
from splitbuddy.db.repository import BillRepository
from splitbuddy.domain.assembler import assemble
from splitbuddy.domain.errors import BillError
from splitbuddy.domain.history import summarize_bill, summarize_history
from splitbuddy.domain.models import Bill, bill_to_record
from splitbuddy.services.exchange_rates import (
    ExchangeRateClient,
    ExchangeRateError,
    convert,
    normalize_code,
)

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


def _json_error(message: str, *, status: int = 400, code: str = "bad_request"):
    return jsonify({"error": {"code": code, "message": message}}), status


def _error_body(error: BillError):
    return {"code": error.code, "message": error.message}


def _bill_error(error: BillError, *, status: int = 422):
    return _json_error(error.message, status=status, code=error.code)


def _repo() -> BillRepository:
    return BillRepository(current_app.config.get("DATABASE_URL", ""))


def _rates_client() -> ExchangeRateClient:
    return ExchangeRateClient(
        current_app.config.get("EXCHANGE_RATE_API_KEY", ""),
        base_url=current_app.config.get("EXCHANGE_RATE_API_URL", "https://v6.exchangerate-api.com/v6"),
        timeout=current_app.config.get("EXCHANGE_RATE_TIMEOUT", 10.0),
    )


def _tolerance() -> Decimal:
    return Decimal(str(current_app.config.get("CONSISTENCY_TOLERANCE", "0.01")))


def _db_unavailable():
    return _json_error("Database is not configured.", status=503, code="db_unavailable")


def _assemble_from_request():
    """
    Shared by preview and save so both go through the same allocator.
    Returns (bill, None) or (None, error_response).
    """
    data = request.get_json(silent=True)
    if data is None:
        return None, _json_error("Request body must be JSON.", status=400)

    try:
        draft = parse_bill_draft(data)
    except ApiValidationError as e:
        return None, _json_error(str(e), status=400)

    result = assemble(draft)
    if not result.ok:
        return None, _bill_error(result.error)
    return result.value, None


def _summary_body(bill: Bill):
    result = summarize_bill(bill, tolerance=_tolerance())
    if not result.ok:
        return None, _bill_error(result.error, status=409)
    return result.value.to_dict(), None


@api_bp.get("/health")
def health():
    return jsonify({"status": "ok"}), 200


@api_bp.post("/bills/preview")
def preview_bill():
    bill, error = _assemble_from_request()
    if error is not None:
        return error

    body, error = _summary_body(bill)
    if error is not None:
        return error
    return jsonify(body), 200


@api_bp.post("/bills")
def create_bill():
    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    bill, error = _assemble_from_request()
    if error is not None:
        return error

    try:
        repo.insert_bill(bill)
    except Exception:
        logger.exception("Failed to persist bill %s", bill.id)
        return _json_error("Failed to persist bill to database.", status=500, code="db_error")

    body, error = _summary_body(bill)
    if error is not None:
        return error
    return jsonify(body), 201


@api_bp.get("/bills")
def list_bills():
    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        rows = repo.list_bills()
    except Exception:
        logger.exception("Failed to load bills")
        return _json_error("Failed to load bills.", status=500, code="db_error")

    bills = [row.value for row in rows if row.ok]
    out = []
    for bill, result in summarize_history(bills, tolerance=_tolerance()):
        if result.ok:
            out.append(result.value.to_dict())
        else:
            # still listed, but flagged instead of showing mismatched numbers
            out.append(
                {
                    "id": bill.id,
                    "title": bill.title,
                    "date": bill.created_at.isoformat(),
                    "error": _error_body(result.error),
                }
            )
    # unreadable rows have no usable date, so they go last
    for row in rows:
        if not row.ok:
            out.append({"id": row.error.bill_id, "error": _error_body(row.error)})
    return jsonify({"bills": out}), 200


@api_bp.get("/bills/latest")
def latest_bill():
    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        row = repo.get_latest_bill()
    except Exception:
        logger.exception("Failed to load latest bill")
        return _json_error("Failed to load bills.", status=500, code="db_error")

    if row is None:
        return _json_error("No bills yet.", status=404, code="not_found")
    if not row.ok:
        return _bill_error(row.error, status=409)
    bill = row.value

    body, error = _summary_body(bill)
    if error is not None:
        return error
    return jsonify(body), 200


@api_bp.get("/bills/<bill_id>")
def get_bill(bill_id: str):
    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        row = repo.get_bill(bill_id=bill_id)
    except Exception:
        logger.exception("Failed to load bill %s", bill_id)
        return _json_error("Failed to load bill.", status=500, code="db_error")

    if row is None:
        return _json_error(f"Bill not found: {bill_id}", status=404, code="not_found")
    if not row.ok:
        return _bill_error(row.error, status=409)
    bill = row.value

    body, error = _summary_body(bill)
    if error is not None:
        return error
    return jsonify({"summary": body, "record": bill_to_record(bill)}), 200


@api_bp.delete("/bills/<bill_id>")
def delete_bill(bill_id: str):
    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        deleted = repo.delete_bill(bill_id=bill_id)
    except Exception:
        logger.exception("Failed to delete bill %s", bill_id)
        return _json_error("Failed to delete bill.", status=500, code="db_error")

    if not deleted:
        return _json_error(f"Bill not found: {bill_id}", status=404, code="not_found")
    return "", 204


@api_bp.get("/rates/<code>")
def get_rates(code: str):
    try:
        base = normalize_code(code)
    except ExchangeRateError as e:
        return _json_error(str(e), status=400)

    try:
        rates = _rates_client().get_rates(base)
    except ExchangeRateError as e:
        return _json_error(str(e), status=502, code="rates_unavailable")

    return jsonify({"base": base, "rates": {k: str(v) for k, v in rates.items()}}), 200


@api_bp.post("/rates/convert")
def convert_amount():
    data = request.get_json(silent=True)
    if data is None:
        return _json_error("Request body must be JSON.", status=400)

    try:
        amount, source, target = parse_convert_request(data)
        source = normalize_code(source)
        target = normalize_code(target)
    except (ApiValidationError, ExchangeRateError) as e:
        return _json_error(str(e), status=400)

    try:
        rates = _rates_client().get_rates(source)
        converted = convert(amount, rates, target)
    except ExchangeRateError as e:
        return _json_error(str(e), status=502, code="rates_unavailable")

    return jsonify(
        {
            "amount": str(amount),
            "from": source,
            "to": target,
            "rate": str(rates[target]),
            "converted": str(converted),
        }
    ), 200
