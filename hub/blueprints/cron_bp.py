"""
Cron blueprint: scheduled jobs triggered by the platform scheduler.

Endpoints:
    POST /api/cron/survey-scheduler   (Authorization: Bearer <CRON_SECRET>)
"""

import logging

from flask import Blueprint, jsonify

from hub.auth import require_cron_secret
from hub.services.survey_service import run_scheduler

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/cron")


@cron_bp.route("/survey-scheduler", methods=["GET", "POST"])
@require_cron_secret
def survey_scheduler():
    """Open due scheduled waves and close expired open waves."""
    return jsonify(run_scheduler())
