import asyncio
import hashlib
import json
import logging
import os
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

import click
from flask import Flask, jsonify, render_template, request

from loan_forecast.data_models import ScheduleRow
from loan_forecast.engine import compute_schedule, summarize_schedule
from loan_forecast.formatter import serialize_schedule
from loan_forecast.main import build_config_from_options
from loan_forecast.report import REPORT_ERROR_TEXT, generate_report

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["PREVIEW_ROWS"] = int(os.environ.get("LOAN_FORECAST_PREVIEW_ROWS", "120"))

FALSE_VALUES = {"0", "false", "off", "no"}


class ReportCache:
    """Reports already generated, keyed by schedule fingerprint.

    Safe to share between request threads. ``lock_for`` hands out one lock
    per fingerprint so that a report is generated once even when the same
    schedule is requested concurrently.
    """

    def __init__(self, max_entries: int = 64) -> None:
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self._key_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            report = self._entries.get(key)
            if report is not None:
                self._entries.move_to_end(key)
            return report

    def put(self, key: str, report: str) -> None:
        with self._lock:
            self._entries[key] = report
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._key_locks.pop(evicted, None)

    def lock_for(self, key: str) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def forget_lock(self, key: str) -> None:
        """Drop the lock of a key that has no cached report."""
        with self._lock:
            if key not in self._entries:
                self._key_locks.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()


report_cache = ReportCache()


def parse_form_list(value: Any) -> List[str]:
    """Parse a comma or newline separated list of entries from a form field.

    JSON payloads may send a list instead. Returns a list of trimmed strings,
    skipping any empty entries.
    """
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(p).strip() for p in value]
    else:
        parts = [p.strip() for p in str(value).replace("\n", ",").split(",")]
    return [p for p in parts if p]


def _field(form, name: str, default: str = "") -> str:
    value = form.get(name, default)
    return default if value is None else str(value).strip()


def _flag(form, name: str, default: bool = True) -> bool:
    value = form.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in FALSE_VALUES


def _form_to_config(form):
    return build_config_from_options(
        principal=_field(form, "principal"),
        tenure=_field(form, "tenure", "0"),
        start_date=_field(form, "start_date") or None,
        down_payment=_field(form, "down_payment") or None,
        apply_interest=_flag(form, "apply_interest"),
        rate_mode=_field(form, "rate_mode", "auto"),
        rate=_field(form, "rate", "8") or "8",
        interest_type=_field(form, "interest_type", "reducing"),
        insurance_rate=_field(form, "insurance_rate") if _flag(form, "insurance", False) else None,
        fee=tuple(parse_form_list(form.get("fees"))),
        scenario=tuple(parse_form_list(form.get("scenarios"))),
        penalty=tuple(parse_form_list(form.get("penalties"))),
    )


def _run_analysis(form) -> Tuple[List[ScheduleRow], Dict[str, object], List[dict]]:
    config = _form_to_config(form)
    schedule = compute_schedule(config)
    return schedule, summarize_schedule(schedule), serialize_schedule(schedule)


def _schedule_fingerprint(serialized_schedule: List[dict]) -> str:
    payload = json.dumps(serialized_schedule, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _report_for(schedule: List[ScheduleRow], serialized_schedule: List[dict]) -> Tuple[str, bool]:
    """Return the report for a schedule and whether it came from the cache.

    Reports are generated at most once per distinct schedule, also across
    concurrent requests. Error texts are not cached so that a later request
    can retry.
    """
    key = _schedule_fingerprint(serialized_schedule)
    cached = report_cache.get(key)
    if cached is not None:
        return cached, True
    with report_cache.lock_for(key):
        # another request may have finished generating while we waited
        cached = report_cache.get(key)
        if cached is not None:
            return cached, True
        report = asyncio.run(generate_report(schedule))
        if report != REPORT_ERROR_TEXT:
            report_cache.put(key, report)
            return report, False
    report_cache.forget_lock(key)
    return report, False


def _json_payload() -> Optional[Dict[str, Any]]:
    """Return the JSON request body, or ``None`` when it is not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


@app.route("/", methods=["GET", "POST"])
def index():
    summary = None
    schedule = None
    report = None
    error = None
    truncated = 0

    if request.method == "POST":
        action = request.form.get("action", "run")
        try:
            full_schedule, summary, serialized = _run_analysis(request.form)
            preview_rows = app.config["PREVIEW_ROWS"]
            schedule = serialized[:preview_rows]
            truncated = max(len(serialized) - preview_rows, 0)
            if action == "report":
                report, _ = _report_for(full_schedule, serialized)
        except (click.ClickException, ValueError) as exc:
            logger.info("Rejected loan input: %s", exc)
            error = str(exc)

    return render_template(
        "index.html",
        form=request.form,
        summary=summary,
        schedule=schedule,
        truncated=truncated,
        report=report,
        error=error,
    )


@app.post("/api/schedule")
def api_schedule():
    data = _json_payload()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    try:
        _, summary, serialized = _run_analysis(data)
    except (click.ClickException, ValueError) as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"summary": summary, "schedule": serialized})


@app.post("/api/report")
def api_report():
    data = _json_payload()
    if data is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400
    try:
        schedule, _, serialized = _run_analysis(data)
    except (click.ClickException, ValueError) as exc:
        return jsonify({"error": str(exc)}), 400
    report, cached = _report_for(schedule, serialized)
    return jsonify({"report": report, "cached": cached})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print("Starting Loan Forecast web app...")
    app.run(host="0.0.0.0", port=8710, debug=True)
