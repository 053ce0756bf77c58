"""
kasir/main/routes.py
────────────────────
Health check for the load balancer / uptime monitor.
"""
import shutil

from flask import jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from kasir import db
from kasir.main import main


@main.route("/health")
def health():
    status = "ok"
    failures = []
    details = {}

    # 1. DB Check
    try:
        db.session.execute(text("SELECT 1"))
        details['db'] = 'ok'
    except SQLAlchemyError as e:
        status = "error"
        details['db'] = 'error'
        failures.append(f"DB: {e}")
        current_app.logger.error(f"Health check failed (DB): {e}")

    # 2. Disk Check
    total, used, free = shutil.disk_usage("/")
    percent_free = (free / total) * 100
    details['disk_free_percent'] = round(percent_free, 1)
    if percent_free < 10:
        msg = f"Low Disk Space: {free // (2**30)}GB free ({percent_free:.1f}%)"
        failures.append(msg)
        current_app.logger.warning(msg)

    return jsonify({
        'status':   status,
        'details':  details,
        'failures': failures,
    }), 200 if status == "ok" else 503
