"""
Flask JSON API exposing the command surface to the web UI.
"""
import io
import logging
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify, request, send_file

from .models.errors import CommandResult
from .models.settings import ManagerSettings
from .services.command_service import CommandService

ERROR_STATUS = {
    'InvalidInput': 400,
    'InvalidName': 400,
    'ValidationFailed': 400,
    'NotInitialized': 409,
    'AlreadyExists': 409,
    'AlreadyInitialized': 409,
    'NotFound': 404,
    'NotAuthenticated': 403,
    'BinaryMissing': 500,
    'CryptoFailure': 500,
    'StartFailed': 500,
    'StopFailed': 500,
    'InstallFailed': 500,
    'BundleRefused': 500,
    'InternalError': 500,
}


class ManagerFlaskApp:
    """Flask application wrapping a CommandService."""

    def __init__(self, command_service: CommandService):
        self.app = Flask(__name__)
        self.commands = command_service
        self.logger = logging.getLogger(__name__)

        self._setup_routes()
        self._setup_error_handlers()
        self._setup_security_headers()

    @staticmethod
    def _respond(result: CommandResult):
        status = 200 if result.success else ERROR_STATUS.get(result.error, 500)
        return jsonify(result.to_dict()), status

    @staticmethod
    def _body() -> dict:
        if request.is_json:
            return request.get_json(silent=True) or {}
        return request.form.to_dict()

    def _setup_routes(self):
        """Set up API routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            return jsonify({
                'status': 'healthy',
                'service': 'wezterm-manager',
                'timestamp': datetime.now().isoformat()
            })

        @self.app.route('/api/status', methods=['GET'])
        def status():
            return self._respond(self.commands.status())

        @self.app.route('/api/service/<action>', methods=['POST'])
        def control_service(action):
            handlers = {
                'start': self.commands.start,
                'stop': self.commands.stop,
                'restart': self.commands.restart,
            }
            if action not in handlers:
                return jsonify({'success': False, 'message': f'Unknown action: {action}'}), 400
            return self._respond(handlers[action]())

        @self.app.route('/api/autostart', methods=['POST'])
        def set_autostart():
            return self._respond(self.commands.set_autostart(self._body().get('enabled')))

        @self.app.route('/api/ca', methods=['POST'])
        def init_ca():
            return self._respond(self.commands.init_ca())

        @self.app.route('/api/certs', methods=['GET'])
        def list_certs():
            return self._respond(self.commands.list_certs())

        @self.app.route('/api/certs', methods=['POST'])
        def generate_cert():
            return self._respond(self.commands.generate_cert(self._body().get('name', '')))

        @self.app.route('/api/certs/verify', methods=['POST'])
        def verify_cert():
            return self._respond(self.commands.verify_cert(self._body().get('pem', '')))

        @self.app.route('/api/certs/<name>', methods=['GET'])
        def cert_info(name):
            return self._respond(self.commands.cert_info(name))

        @self.app.route('/api/certs/<name>', methods=['DELETE'])
        def revoke_cert(name):
            return self._respond(self.commands.revoke_cert(name))

        @self.app.route('/api/certs/<name>/bundle', methods=['GET'])
        def download_cert(name):
            result = self.commands.download_cert(name)
            if not result.success:
                return self._respond(result)

            response = send_file(
                io.BytesIO(result.payload),
                mimetype='application/zip',
                as_attachment=True,
                download_name=f'wezterm-{name}.zip'
            )
            response.headers['Cache-Control'] = 'no-store'
            return response

        @self.app.route('/api/config', methods=['GET'])
        def get_config():
            return self._respond(self.commands.get_config())

        @self.app.route('/api/config', methods=['PUT', 'POST'])
        def save_config():
            return self._respond(self.commands.save_config(self._body()))

        @self.app.route('/api/install', methods=['POST'])
        def install():
            return self._respond(self.commands.install(self._body().get('version', 'latest')))

        @self.app.route('/api/logs', methods=['GET'])
        def get_logs():
            return self._respond(self.commands.get_logs(request.args.get('lines', 100)))

        @self.app.route('/api/stats', methods=['GET'])
        def command_stats():
            return self._respond(self.commands.command_stats())

    def _setup_error_handlers(self):
        """Set up error handlers."""

        @self.app.errorhandler(404)
        def not_found(error):
            return jsonify({
                'success': False,
                'message': 'The requested endpoint does not exist'
            }), 404

        @self.app.errorhandler(405)
        def method_not_allowed(error):
            return jsonify({
                'success': False,
                'message': 'The requested method is not allowed for this endpoint'
            }), 405

        @self.app.errorhandler(500)
        def internal_error(error):
            self.logger.error(f"Internal server error: {error}")
            return jsonify({
                'success': False,
                'message': 'An unexpected error occurred'
            }), 500

    def _setup_security_headers(self):
        """Set up security headers for all responses."""

        @self.app.after_request
        def add_security_headers(response):
            response.headers['X-Content-Type-Options'] = 'nosniff'
            response.headers['X-Frame-Options'] = 'DENY'
            response.headers['Referrer-Policy'] = 'same-origin'
            response.headers.pop('Server', None)
            return response

    def run(self, host: str = '127.0.0.1', port: int = 8765, debug: bool = False):
        """Run the API; it is meant to sit behind the host's web server on loopback."""
        self.logger.info(f"Starting management API on http://{host}:{port}")
        self.app.run(host=host, port=port, debug=debug)

    def get_app(self) -> Flask:
        """Get the Flask application instance."""
        return self.app


def create_app(command_service: Optional[CommandService] = None) -> Flask:
    """Application factory for WSGI servers."""
    if command_service is None:
        command_service = CommandService.from_settings(ManagerSettings.from_file())
    return ManagerFlaskApp(command_service).get_app()
