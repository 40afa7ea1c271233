import unittest
from unittest.mock import patch, MagicMock
from modules.core.firebase_manager import FirebaseManager
from config.environment import Environment

class TestFirebaseManager(unittest.TestCase):
    def setUp(self):
        """Reset FirebaseManager state before each test."""
        FirebaseManager._initialized = False
        FirebaseManager._db = None
        FirebaseManager._firebase = None
        FirebaseManager._firebase_app = None

        self.account_patcher = patch.dict(Environment.FIREBASE_SERVICE_ACCOUNT, {
            'path': None,
            'project_id': 'test-project',
            'private_key_id': 'test-key-id',
            'private_key': 'test-key\\nline',
            'client_email': 'test@test.com',
            'client_id': 'test-client-id',
            'client_x509_cert_url': 'https://test.com/cert'
        })
        self.account_patcher.start()

    def tearDown(self):
        self.account_patcher.stop()
        with patch('modules.core.firebase_manager.firebase_admin.delete_app'):
            FirebaseManager.cleanup()

    @patch('modules.core.firebase_manager.firestore.client')
    @patch('modules.core.firebase_manager.firebase_admin.initialize_app')
    @patch('modules.core.firebase_manager.firebase_admin.get_app')
    @patch('modules.core.firebase_manager.credentials.Certificate')
    def test_initialize_with_inline_credentials(self, mock_cert, mock_get_app, mock_init, mock_client):
        mock_get_app.side_effect = ValueError("No app")
        mock_init.return_value = MagicMock(name='app')

        self.assertTrue(FirebaseManager.initialize())

        cert_fields = mock_cert.call_args[0][0]
        self.assertEqual(cert_fields['private_key'], 'test-key\nline')
        self.assertEqual(mock_init.call_args[0][1], {'projectId': 'test-project'})
        self.assertIs(FirebaseManager.get_firebase_app(), mock_init.return_value)
        self.assertIs(FirebaseManager.get_firestore_client(), mock_client.return_value)

    @patch('modules.core.firebase_manager.firestore.client')
    @patch('modules.core.firebase_manager.firebase_admin.initialize_app')
    @patch('modules.core.firebase_manager.firebase_admin.get_app')
    def test_reuses_existing_app(self, mock_get_app, mock_init, mock_client):
        FirebaseManager.initialize()
        mock_init.assert_not_called()
        self.assertIs(FirebaseManager.get_firebase_app(), mock_get_app.return_value)

    @patch('modules.core.firebase_manager.credentials.ApplicationDefault')
    def test_application_default_credentials(self, mock_default):
        with patch.dict(Environment.FIREBASE_SERVICE_ACCOUNT, {'private_key': None}):
            self.assertIs(FirebaseManager._build_credentials(), mock_default.return_value)

    @patch('modules.core.firebase_manager.firebase_admin.get_app')
    def test_failed_initialization(self, mock_get_app):
        mock_get_app.side_effect = RuntimeError("boom")
        with self.assertRaises(RuntimeError):
            FirebaseManager.get_firebase_app()

    @patch('modules.core.firebase_manager.pyrebase.initialize_app')
    def test_pyrebase_auth(self, mock_pyrebase):
        config = {'apiKey': 'key', 'authDomain': 'test.firebaseapp.com', 'projectId': 'test-project'}
        with patch.object(Environment, 'get_firebase_config', return_value=config):
            auth_client = FirebaseManager.get_pyrebase_auth()

        mock_pyrebase.assert_called_once_with(config)
        self.assertIs(auth_client, mock_pyrebase.return_value.auth.return_value)

    def test_pyrebase_auth_missing_config(self):
        with patch.object(Environment, 'get_firebase_config', return_value={'apiKey': None}):
            with self.assertRaises(ValueError):
                FirebaseManager.get_pyrebase_auth()

if __name__ == '__main__':
    unittest.main()
