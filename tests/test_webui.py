"""Tests for the WebUI module."""

import base64
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

import yaml
from github import GithubException

import pull_request_auto_merger
import watch_list
from pull_request_auto_merger import ResultInfo
from webui.app import create_app


ISSUE_PAYLOAD = {
    'action': 'assigned',
    'issue': {
        'number': 3,
        'html_url': 'https://github.com/acme/widget/issues/3',
        'assignees': [{'login': 'bob'}],
    },
    'repository': {'name': 'widget', 'owner': {'login': 'acme'}},
}


class TestWebUIApp(unittest.TestCase):
    """Tests for the Flask application."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        self.db_path = os.path.join(self.temp_dir, 'test.db')

        self.test_config = {
            'github': {'token': 'test-token'},
            'database_path': self.db_path,
            'cron_repository': 'acme/ops',
        }

        with open(self.config_path, 'w') as f:
            yaml.safe_dump(self.test_config, f)

        watch_list.init_database(self.db_path)

        self.app = create_app(config_path=self.config_path)
        self.app.config['TESTING'] = True
        self.client = self.app.test_client()

        # Auth header for protected routes
        credentials = base64.b64encode(b'admin:admin').decode('utf-8')
        self.auth_header = {'Authorization': f'Basic {credentials}'}

    def tearDown(self):
        """Clean up test fixtures."""
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def post_event(self, event, payload):
        return self.client.post(
            '/webhook',
            data=json.dumps(payload),
            content_type='application/json',
            headers={'X-GitHub-Event': event},
        )

    def test_health_check_no_auth_required(self):
        """Test that health check doesn't require authentication."""
        response = self.client.get('/api/health')
        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'healthy')
        self.assertIn('timestamp', data)
        self.assertIn('version', data)

    def test_config_loaded_from_file(self):
        self.assertEqual(self.app.config['MAIN_CONFIG']['database_path'], self.db_path)

    def test_watch_list_requires_auth(self):
        response = self.client.get('/api/watch-list')
        self.assertEqual(response.status_code, 401)
        self.assertIn('WWW-Authenticate', response.headers)

    def test_watch_list_wrong_credentials(self):
        credentials = base64.b64encode(b'admin:wrong').decode('utf-8')
        response = self.client.get('/api/watch-list', headers={'Authorization': f'Basic {credentials}'})
        self.assertEqual(response.status_code, 401)

    def test_watch_list_contents(self):
        watch_list.add_issue(self.db_path, 'https://github.com/acme/widget/issues/3')
        watch_list.add_issue(self.db_path, 'https://github.com/acme/widget/issues/4')

        response = self.client.get('/api/watch-list', headers=self.auth_header)

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertTrue(data['has_data'])
        self.assertEqual(data['repositories'], [
            {'owner': 'acme', 'repo': 'widget', 'issue_numbers': [3, 4]},
        ])

    def test_watch_list_without_database(self):
        os.remove(self.db_path)
        response = self.client.get('/api/watch-list', headers=self.auth_header)
        data = json.loads(response.data)
        self.assertEqual(data, {'repositories': [], 'has_data': False})

    @patch.object(pull_request_auto_merger, 'handle_issue_event')
    def test_webhook_dispatches_supported_event(self, mock_handle):
        mock_handle.return_value = None

        response = self.post_event('issues', ISSUE_PAYLOAD)

        self.assertEqual(response.status_code, 200)
        data = json.loads(response.data)
        self.assertEqual(data['event'], 'issues.assigned')
        self.assertEqual(data['results'], [])
        config, event = mock_handle.call_args.args
        self.assertEqual(config['database_path'], self.db_path)
        self.assertEqual((event.owner, event.repo, event.issue_number), ('acme', 'widget', 3))
        self.assertEqual(event.assignees, ['bob'])

    @patch.object(pull_request_auto_merger, 'handle_issue_event')
    def test_webhook_returns_results(self, mock_handle):
        mock_handle.return_value = [ResultInfo(url='https://github.com/acme/widget/pull/7', merged=True)]
        payload = dict(ISSUE_PAYLOAD, action='edited')

        response = self.post_event('issues', payload)

        data = json.loads(response.data)
        self.assertEqual(data['results'], [{'url': 'https://github.com/acme/widget/pull/7', 'merged': True}])

    @patch.object(pull_request_auto_merger, 'handle_issue_event')
    def test_webhook_ignores_unsupported_events(self, mock_handle):
        response = self.post_event('issues', dict(ISSUE_PAYLOAD, action='labeled'))
        self.assertEqual(response.status_code, 202)
        self.assertEqual(json.loads(response.data)['status'], 'ignored')

        response = self.post_event('push', {'ref': 'refs/heads/main'})
        self.assertEqual(response.status_code, 202)

        mock_handle.assert_not_called()

    def test_webhook_requires_json(self):
        response = self.client.post('/webhook', data='action=assigned', content_type='text/plain')
        self.assertEqual(response.status_code, 400)

    @patch.object(pull_request_auto_merger, 'handle_issue_event')
    def test_webhook_malformed_payload(self, mock_handle):
        response = self.post_event('issues', {'action': 'closed', 'issue': {'number': 3}})
        self.assertEqual(response.status_code, 400)
        mock_handle.assert_not_called()

    @patch.object(pull_request_auto_merger, 'handle_issue_event')
    def test_webhook_github_failure(self, mock_handle):
        mock_handle.side_effect = GithubException(502, {'message': 'Bad Gateway'}, None)
        response = self.post_event('issues', ISSUE_PAYLOAD)
        self.assertEqual(response.status_code, 502)
        self.assertEqual(json.loads(response.data)['error'], 'Bad Gateway')


class TestCreateAppWithTestConfig(unittest.TestCase):
    """Tests for create_app with an in-memory configuration."""

    def test_test_config_is_used(self):
        app = create_app(test_config={'database_path': '/nonexistent/wl.db'})
        client = app.test_client()
        credentials = base64.b64encode(b'admin:admin').decode('utf-8')

        response = client.get('/api/watch-list', headers={'Authorization': f'Basic {credentials}'})

        self.assertEqual(json.loads(response.data), {'repositories': [], 'has_data': False})


if __name__ == '__main__':
    unittest.main()
