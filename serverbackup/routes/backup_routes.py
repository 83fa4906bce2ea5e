"""
Backup routes - manual runs, toggling and listing.
"""

from flask import Blueprint, current_app, jsonify, request

from serverbackup.backup.storage import StorageError
from serverbackup.scheduler import get_scheduled_jobs, is_scheduler_running


bp = Blueprint('backup', __name__, url_prefix='/api/backup')

DEFAULT_LIST_LIMIT = 8


def _orchestrator():
    return current_app.extensions['backup_orchestrator']


@bp.route('/run', methods=['POST'])
def run_backup():
    """
    Request a manual backup.

    Manual backups skip the enabled, player and bypass checks.

    Returns:
        202 when scheduled, 409 if a backup is already running
    """
    if not _orchestrator().request_manual_backup():
        return jsonify({'error': 'A backup is already in progress'}), 409

    return jsonify({'message': 'Backup requested'}), 202


@bp.route('/toggle', methods=['POST'])
def toggle_backups():
    """
    Enable or disable scheduled backups.

    Returns:
        JSON with the new state
    """
    orchestrator = _orchestrator()
    enabled = orchestrator.toggle_enabled()
    message = orchestrator.messages.get_message('backuptoggleon' if enabled else 'backuptoggleoff')

    return jsonify({'enabled': enabled, 'message': message})


@bp.route('/list', methods=['GET'])
def list_backups():
    """
    List backups in the backup folder, newest first.

    Query parameters:
        - limit: Maximum number of entries (default: 8)

    Returns:
        JSON with the backup folder and its entries
    """
    limit = request.args.get('limit', DEFAULT_LIST_LIMIT, type=int)
    if limit is None or limit < 1:
        return jsonify({'error': 'limit must be a positive integer'}), 400

    store = current_app.extensions['backup_store']
    try:
        entries = store.list_backups(limit=limit)
    except StorageError as e:
        current_app.logger.error(f"Listing backups failed: {e}")
        return jsonify({'error': str(e)}), 500

    return jsonify({
        'backup_path': str(store.backup_root),
        'count': len(entries),
        'backups': [
            {**entry, 'modified': entry['modified'].isoformat()}
            for entry in entries
        ]
    })


@bp.route('/status', methods=['GET'])
def backup_status():
    """
    Get engine state, the last run and the scheduler status.
    """
    status = _orchestrator().status()
    status['scheduler_status'] = 'running' if is_scheduler_running() else 'stopped'
    status['scheduled_jobs'] = get_scheduled_jobs()

    return jsonify(status)
