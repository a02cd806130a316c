"""
Financial Twin API

Flask application exposing the current twin profile, its snapshot history,
public hash verification, regeneration, aggregator webhook intake and the
read-only analytics endpoints.
"""

import os
from typing import Optional

from flask import Flask, jsonify, request

from twin_engine.config.settings import Settings, configure_logging
from twin_engine.exceptions import (
    InvalidInputError,
    LedgerError,
    TwinEngineError,
    TwinNotFoundError,
    UpstreamError,
)
from twin_engine.service import TwinService, build_service


def _int_arg(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidInputError(f"{name} must be an integer")


def create_app(service: Optional[TwinService] = None) -> Flask:
    """
    Create the Flask application.

    Args:
        service: TwinService to serve; built from environment settings if None
    """
    app = Flask(__name__)
    if service is None:
        service = build_service(Settings.from_env())
    app.extensions['twin_service'] = service

    # ----------------------------
    # Error handling
    # ----------------------------
    @app.errorhandler(InvalidInputError)
    def handle_invalid_input(exc):
        app.logger.warning(f"Invalid request: {exc}")
        return jsonify({'error': str(exc)}), 400

    @app.errorhandler(TwinNotFoundError)
    def handle_not_found(exc):
        return jsonify({'error': str(exc)}), 404

    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc):
        app.logger.error(f"Ledger unavailable: {exc}")
        return jsonify({'error': 'Verification ledger unavailable', 'details': str(exc)}), 503

    @app.errorhandler(UpstreamError)
    def handle_upstream_error(exc):
        app.logger.error(f"Upstream error: {exc}")
        return jsonify({'error': 'Upstream service unavailable', 'details': str(exc)}), 502

    @app.errorhandler(TwinEngineError)
    def handle_engine_error(exc):
        app.logger.error(f"Engine error: {exc}", exc_info=True)
        return jsonify({'error': str(exc)}), 500

    # ----------------------------
    # Twin profile
    # ----------------------------
    @app.route('/twins/<twin_id>', methods=['GET'])
    def get_twin(twin_id):
        """Current snapshot with verification and refresh status."""
        return jsonify(service.get_twin(twin_id))

    @app.route('/twins/<twin_id>/regenerate', methods=['POST'])
    def regenerate(twin_id):
        run = service.regenerate(twin_id)
        app.logger.info(f"Regeneration requested for twin {twin_id}: run {run['id']}")
        return jsonify({'run': run}), 202

    @app.route('/twins/<twin_id>/history', methods=['GET'])
    def history(twin_id):
        limit = _int_arg('limit')
        return jsonify({'twin_id': twin_id, 'snapshots': service.history(twin_id, limit)})

    @app.route('/verify/<content_hash>', methods=['GET'])
    def verify(content_hash):
        """Public endpoint: is this content hash anchored on the ledger?"""
        return jsonify(service.verify(content_hash))

    # ----------------------------
    # Analytics
    # ----------------------------
    @app.route('/twins/<twin_id>/stress-test', methods=['POST'])
    def stress_test(twin_id):
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'error': 'No scenario provided'}), 400
        return jsonify(service.stress_test(twin_id, data))

    @app.route('/twins/<twin_id>/time-machine', methods=['POST'])
    def time_machine(twin_id):
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        return jsonify(service.time_machine_projection(twin_id, data))

    @app.route('/twins/<twin_id>/anomalies', methods=['GET'])
    def anomalies(twin_id):
        return jsonify(service.anomalies(twin_id))

    @app.route('/twins/<twin_id>/benchmark', methods=['GET'])
    def benchmark(twin_id):
        demographics = {
            name: request.args.get(name)
            for name in ('age_range', 'region', 'income_range')
            if request.args.get(name)
        }
        return jsonify(service.benchmark(twin_id, demographics))

    @app.route('/twins/<twin_id>/pillar-explanations', methods=['GET'])
    def pillar_explanations(twin_id):
        pillar = request.args.get('pillar') or None
        return jsonify(service.pillar_explanations(twin_id, pillar, _int_arg('limit')))

    @app.route('/twins/<twin_id>/narrative', methods=['GET'])
    def narrative(twin_id):
        audience = request.args.get('audience', 'consumer')
        return jsonify(service.narrative(twin_id, audience))

    # ----------------------------
    # Sync
    # ----------------------------
    @app.route('/twins/<twin_id>/sync', methods=['GET'])
    def sync_dashboard(twin_id):
        return jsonify(service.sync_dashboard(twin_id))

    @app.route('/webhooks/aggregator', methods=['POST'])
    def aggregator_webhook():
        data = request.get_json(silent=True)
        if data is None:
            app.logger.warning("Webhook: no JSON body")
            return jsonify({'error': 'No webhook body provided'}), 400
        result = service.handle_webhook(data)
        return jsonify(result), 202 if result['accepted'] else 200

    return app


if __name__ == '__main__':
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    # Debug mode is controlled by environment variable for security
    debug_mode = os.environ.get('FLASK_DEBUG', '0') == '1'
    create_app(build_service(settings)).run(debug=debug_mode, port=int(os.environ.get('PORT', 5000)), host='0.0.0.0')
