"""
HTTP API for owuiarchive.
"""

from flask import Flask, jsonify
from flask_cors import CORS

from owuiarchive import __version__
from owuiarchive.client.openwebui import OpenWebUIClient
from owuiarchive.core.config import Settings, get_settings


def default_client_factory(settings: Settings) -> OpenWebUIClient:
    return OpenWebUIClient(settings.open_webui_url, settings.api_key, timeout=settings.request_timeout)


def create_app(settings=None, client_factory=None):
    """Create and configure the Flask application.

    Args:
        settings: Settings to use instead of the environment
        client_factory: Callable building a client from settings
    """
    app = Flask(__name__)

    # Enable CORS for all routes and origins
    CORS(app)

    app.config.from_mapping(
        JSON_SORT_KEYS=False,
        OWUI_SETTINGS=settings or get_settings(),
        OWUI_CLIENT_FACTORY=client_factory or default_client_factory,
    )

    @app.route('/api/health')
    def health_check():
        """Health check endpoint."""
        return jsonify({'status': 'ok', 'version': __version__})

    @app.route('/api')
    def api_root():
        """API root endpoint."""
        return jsonify({
            'status': 'ok',
            'message': 'owuiarchive API',
            'endpoints': [
                '/api/health',
                '/api/config',
                '/api/backups',
                '/api/backup',
                '/api/restore',
            ]
        })

    from owuiarchive.api.routes.backups import bp as backups_bp

    app.register_blueprint(backups_bp)

    return app
