#!/usr/bin/env python3
"""
Flask-based webhook receiver for the repo-maintainer auto-merge tools.

This module provides:
- A GitHub webhook endpoint that feeds issue events to the pull request
  auto-merger
- A read-only view of the watch list
- A health check endpoint
"""

import logging
import os
import secrets
from dataclasses import asdict
from datetime import datetime, timezone
from functools import wraps

import yaml
from flask import Flask, jsonify, request
from github import GithubException

import pull_request_auto_merger
import watch_list
from github_gateway import ConfigurationError, apply_github_env_overrides, github_error_message

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Application version
VERSION = '1.0.0'


def create_app(config_path=None, test_config=None):
    """
    Create and configure the Flask application.

    Args:
        config_path: Path to the YAML configuration file
        test_config: Optional configuration dictionary used instead of the file

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    app.config['SECRET_KEY'] = os.environ.get('WEBUI_SECRET_KEY') or secrets.token_hex(32)

    if test_config is not None:
        app.config['MAIN_CONFIG'] = test_config
    else:
        config_path = config_path or os.environ.get('CONFIG_PATH', 'config.yaml')
        app.config['CONFIG_PATH'] = config_path
        main_config = {}
        try:
            if os.path.exists(config_path):
                with open(config_path, 'r', encoding='utf-8') as f:
                    main_config = yaml.safe_load(f) or {}
            else:
                logger.warning(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error loading configuration: {e}")
        app.config['MAIN_CONFIG'] = apply_github_env_overrides(main_config)

    register_routes(app)

    return app


def check_auth(username, password):
    """Check if a username/password combination is valid."""
    return (username == os.environ.get('WEBUI_USERNAME', 'admin') and
            password == os.environ.get('WEBUI_PASSWORD', 'admin'))


def authenticate():
    """Send a 401 response that enables basic auth."""
    return jsonify({
        'error': 'Authentication required',
        'message': 'Please provide valid credentials'
    }), 401, {'WWW-Authenticate': 'Basic realm="repo-maintainer"'}


def requires_auth(f):
    """Decorator to require HTTP basic authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth = request.authorization
        if not auth or not check_auth(auth.username, auth.password):
            return authenticate()
        return f(*args, **kwargs)
    return decorated


def event_name_from_request(payload: dict) -> str:
    """Combine the X-GitHub-Event header and the payload action, e.g. "issues.assigned"."""
    event = request.headers.get('X-GitHub-Event', '')
    action = payload.get('action')
    return f"{event}.{action}" if action else event


def register_routes(app):
    """Register all routes for the application."""

    def database_path():
        config = app.config.get('MAIN_CONFIG', {})
        return config.get('database_path', watch_list.DEFAULT_DATABASE_PATH)

    @app.route('/api/health')
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': VERSION
        })

    @app.route('/webhook', methods=['POST'])
    def webhook():
        """Receive a GitHub webhook and run the pull request auto-merger for issue events."""
        if not request.is_json:
            return jsonify({
                'error': "Invalid Content-Type header. Expected 'application/json'.",
                'received_content_type': request.headers.get('Content-Type')
            }), 400

        payload = request.get_json(silent=True) or {}
        name = event_name_from_request(payload)

        if name not in pull_request_auto_merger.SUPPORTED_EVENTS:
            logger.info(f"Ignoring unsupported event {name!r}")
            return jsonify({'status': 'ignored', 'event': name}), 202

        try:
            event = pull_request_auto_merger.IssueEvent.from_payload(name, payload)
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({'error': f'Malformed {name} payload: missing {e}'}), 400

        config = app.config.get('MAIN_CONFIG', {})
        try:
            results = pull_request_auto_merger.handle_issue_event(config, event)
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return jsonify({'error': f'Configuration error: {e}'}), 500
        except GithubException as e:
            logger.error(f"GitHub API error while handling {name}: {github_error_message(e)}")
            return jsonify({'error': github_error_message(e)}), 502

        return jsonify({
            'status': 'processed',
            'event': name,
            'results': [asdict(result) for result in results or []]
        })

    @app.route('/api/watch-list')
    @requires_auth
    def get_watch_list():
        """List every watched repository with its issue numbers."""
        db_path = database_path()
        if not os.path.exists(db_path):
            return jsonify({'repositories': [], 'has_data': False})

        repositories = watch_list.get_all_repositories(db_path)
        return jsonify({
            'repositories': [asdict(entry) for entry in repositories],
            'has_data': any(entry.issue_numbers for entry in repositories)
        })


def main():
    """Run the webhook receiver."""
    import argparse

    parser = argparse.ArgumentParser(description='Run the repo-maintainer webhook receiver')
    parser.add_argument(
        '-c', '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        default=int(os.environ.get('WEBUI_PORT', 5000)),
        help='Port to run the server on (default: 5000)'
    )
    parser.add_argument(
        '-H', '--host',
        default=os.environ.get('WEBUI_HOST', '127.0.0.1'),
        help='Host to bind the server to (default: 127.0.0.1)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Run in debug mode'
    )

    args = parser.parse_args()

    app = create_app(config_path=args.config)
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
