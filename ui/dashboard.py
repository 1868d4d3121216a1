"""Admin dashboard for the clinic's appointments.

This module exposes a small Flask application listing recent appointments
with their patients and status counts, and accepting schedule/cancel actions.
The listing is cached until a write through this application invalidates it.
Store failures are reported as a generic error; raw store messages never
reach the client.
"""
from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, render_template_string, request

from agents.appointments import RecentAppointments, list_recent_appointments, update_appointment
from agents.records import RecordsError
from connector import Connection

logger = logging.getLogger(__name__)

ACTION_STATUSES = {"schedule": "scheduled", "cancel": "cancelled"}


class AppointmentListingCache:
    """Holds the last computed listing until a write invalidates it."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._lock = threading.Lock()
        self._listing: Optional[RecentAppointments] = None
        self._generation = 0

    def get(self) -> RecentAppointments:
        with self._lock:
            listing = self._listing
            generation = self._generation
        if listing is not None:
            return listing

        listing = list_recent_appointments(self._connection)
        with self._lock:
            # A write during the listing makes this result stale; return it but do not keep it.
            if self._generation == generation:
                self._listing = listing
        return listing

    def invalidate(self, table_id: Optional[str] = None) -> None:
        logger.debug("Invalidating appointment listing after write to %s", table_id or "<any>")
        with self._lock:
            self._generation += 1
            self._listing = None


dashboard_template = """
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\">
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">
    <title>Salus Admin Dashboard</title>
    <link
      href=\"https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css\"
      rel=\"stylesheet\"
      integrity=\"sha384-QWTKZyjpPEjISv5WaRU9OFeRpok6YctnYmDr5pNlyT2bRjXh0JMhjY6hW+ALEwIH\"
      crossorigin=\"anonymous\"
    >
  </head>
  <body class=\"bg-light\">
    <main class=\"container my-4\">
      <section class=\"row g-4 mb-4\">
        <div class=\"col-md-4\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h2 class=\"h4\">{{ listing.scheduled_count }}</h2><p class=\"mb-0\">Scheduled appointments</p>
        </div></div></div>
        <div class=\"col-md-4\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h2 class=\"h4\">{{ listing.pending_count }}</h2><p class=\"mb-0\">Pending appointments</p>
        </div></div></div>
        <div class=\"col-md-4\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h2 class=\"h4\">{{ listing.cancelled_count }}</h2><p class=\"mb-0\">Cancelled appointments</p>
        </div></div></div>
      </section>
      {% if listing.items %}
        <table class=\"table table-sm table-striped\">
          <thead>
            <tr>
              <th scope=\"col\">Patient</th>
              <th scope=\"col\">Date</th>
              <th scope=\"col\">Status</th>
              <th scope=\"col\">Doctor</th>
            </tr>
          </thead>
          <tbody>
            {% for appointment in listing.items %}
              <tr>
                <td>{{ appointment.patient.name if appointment.patient is mapping else appointment.patient or '—' }}</td>
                <td>{{ appointment.schedule or '—' }}</td>
                <td>{{ appointment.status or '—' }}</td>
                <td>{{ appointment.primaryPhysician or '—' }}</td>
              </tr>
            {% endfor %}
          </tbody>
        </table>
      {% else %}
        <p class=\"text-muted mb-0\">No appointments yet.</p>
      {% endif %}
    </main>
  </body>
</html>
"""


def _failure() -> Tuple[Response, int]:
    return jsonify({"error": "operation failed"}), 502


def create_app(connection: Connection) -> Flask:
    app = Flask(__name__)
    cache = AppointmentListingCache(connection)
    app.extensions["appointment_listing"] = cache

    @app.route("/admin", methods=["GET"])
    def admin() -> Any:
        try:
            listing = cache.get()
        except RecordsError:
            logger.exception("Failed to load the admin dashboard")
            return "Operation failed", 502
        return render_template_string(dashboard_template, listing=listing)

    @app.route("/admin/appointments", methods=["GET"])
    def appointments() -> Any:
        """Return the recent appointment summary as JSON."""
        try:
            return jsonify(cache.get().to_dict())
        except RecordsError:
            logger.exception("Failed to list appointments")
            return _failure()

    @app.route("/admin/appointments/<appointment_id>/<action>", methods=["POST"])
    def change_appointment(appointment_id: str, action: str) -> Any:
        if action not in ACTION_STATUSES:
            return jsonify({"error": f"unknown action {action!r}"}), 404

        body: Dict[str, Any] = request.get_json(silent=True) or {}
        user_id = body.get("userId")
        changes = body.get("appointment") or {}
        if not isinstance(user_id, str) or not user_id or not isinstance(changes, dict):
            return jsonify({"error": "userId and appointment are required"}), 400
        changes = {**changes, "status": ACTION_STATUSES[action]}

        try:
            outcome = update_appointment(
                connection,
                appointment_id,
                user_id,
                changes,
                action,
                time_zone=body.get("timeZone") or "UTC",
                on_change=cache.invalidate,
            )
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        except RecordsError:
            logger.exception("Failed to %s appointment %s", action, appointment_id)
            return _failure()

        payload: Dict[str, Any] = {"appointment": outcome.appointment, "notified": outcome.notified}
        if outcome.notification_error:
            payload["warning"] = "notification could not be delivered"
        return jsonify(payload)

    return app


if __name__ == "__main__":
    from connector import connect

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    create_app(connect()).run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=False,
    )
