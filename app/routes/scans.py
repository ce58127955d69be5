"""
Scan routes — launch/poll/resume scans, public reports, frozen-set reset, health.
"""
import logging
from datetime import datetime, timezone

from flask import Blueprint, request, jsonify

from app.pipeline.base import get_platform_info
from app.pipeline.manager import launch_scan, get_scan_status, resume_scan
from app.pipeline.platforms import ADAPTERS
from app.services import db
from app.services.circuit_breaker import get_all_breakers

logger = logging.getLogger('routes.scans')

bp = Blueprint('scans', __name__)


@bp.route('/health')
def health_check():
    """Liveness probe plus circuit breaker state per vendor."""
    breakers = {name: breaker.get_health() for name, breaker in get_all_breakers().items()}
    return jsonify({'status': 'healthy', 'circuit_breakers': breakers}), 200


@bp.route('/health/<service>/reset', methods=['POST'])
def reset_circuit(service):
    """Force a vendor circuit closed."""
    breaker = get_all_breakers().get(service)
    if breaker is None:
        return jsonify({'error': f'Unknown service: {service}'}), 404
    breaker.reset()
    return jsonify({'ok': True, 'service': service, 'state': breaker.state})


# ── Scans ────────────────────────────────────────────────────────────────────

@bp.route('/api/scans', methods=['POST'])
def create_scan():
    """Launch a scan for a domain."""
    data = request.get_json(silent=True) or {}
    domain = (data.get('domain') or '').strip()
    if not domain:
        return jsonify({'error': 'domain is required'}), 400

    try:
        run = launch_scan(
            domain,
            organization_id=data.get('organization_id'),
            monitored_domain_id=data.get('monitored_domain_id'),
        )
        return jsonify(run.to_dict()), 202
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Failed to launch scan for %s: %s", domain, e, exc_info=True)
        return jsonify({'error': str(e)}), 500


@bp.route('/api/scans/<run_id>')
def scan_status(run_id):
    status = get_scan_status(run_id)
    if status is None:
        return jsonify({'error': 'Scan not found'}), 404
    return jsonify(status)


@bp.route('/api/scans/<run_id>/resume', methods=['POST'])
def resume(run_id):
    """Re-enqueue a failed or stalled scan from its first unfinished step."""
    try:
        run = resume_scan(run_id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 409
    if run is None:
        return jsonify({'error': 'Scan not found'}), 404
    return jsonify(run.to_dict()), 202


@bp.route('/api/platforms')
def platforms():
    return jsonify(get_platform_info(ADAPTERS))


# ── Reports ──────────────────────────────────────────────────────────────────

@bp.route('/api/reports/<url_token>')
def get_report(url_token):
    report = db.get_report_by_token(url_token)
    if report is None:
        return jsonify({'error': 'Report not found'}), 404

    expires_at = report.expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at is not None and expires_at < datetime.now(timezone.utc):
        return jsonify({'error': 'Report has expired'}), 410

    return jsonify(report.to_dict())


# ── Frozen research sets ─────────────────────────────────────────────────────

@bp.route('/api/monitored-domains/<int:monitored_domain_id>/unfreeze', methods=['POST'])
def unfreeze(monitored_domain_id):
    """Deactivate the frozen questions/competitors/role families so the next scan re-researches."""
    data = request.get_json(silent=True) or {}
    organization_id = data.get('organization_id')
    if not organization_id:
        return jsonify({'error': 'organization_id is required'}), 400

    counts = db.unfreeze_entity(organization_id, monitored_domain_id)
    return jsonify({'monitored_domain_id': monitored_domain_id, 'deactivated': counts})
