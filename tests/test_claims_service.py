import unittest
from unittest.mock import MagicMock, patch
from firebase_admin import exceptions as firebase_exceptions
from modules.core.models import Plan
from modules.services.claims_service import ClaimsService


class TestClaimsService(unittest.TestCase):
    def setUp(self):
        self.app = MagicMock()
        self.service = ClaimsService(app=self.app)

    @patch('modules.services.claims_service.auth')
    def test_issue_merges_existing_claims(self, mock_auth):
        mock_auth.get_user.return_value = MagicMock(custom_claims={'admin': True, 'plan': 'free'})

        self.assertIsNone(self.service.issue('u1', Plan.PAID))

        uid, claims = mock_auth.set_custom_user_claims.call_args[0]
        self.assertEqual(uid, 'u1')
        self.assertTrue(claims['admin'])
        self.assertEqual(claims['plan'], 'plus')
        self.assertIsInstance(claims['planUpdatedAt'], int)
        self.assertIs(mock_auth.set_custom_user_claims.call_args[1]['app'], self.app)

    @patch('modules.services.claims_service.auth')
    def test_user_without_claims(self, mock_auth):
        mock_auth.get_user.return_value = MagicMock(custom_claims=None)
        self.assertIsNone(self.service.issue('u1', Plan.FREE))
        self.assertEqual(mock_auth.set_custom_user_claims.call_args[0][1]['plan'], 'free')

    @patch('modules.services.claims_service.auth')
    def test_failure_is_reported_not_raised(self, mock_auth):
        mock_auth.get_user.return_value = MagicMock(custom_claims={})
        mock_auth.set_custom_user_claims.side_effect = firebase_exceptions.UnavailableError("Service unavailable")

        with self.assertLogs('modules.services.claims_service', level='WARNING'):
            error = self.service.issue('u1', Plan.PAID)

        self.assertEqual(error, 'Service unavailable')

    @patch('modules.core.firebase_manager.FirebaseManager.get_firebase_app')
    def test_firebase_not_initialised(self, mock_app):
        mock_app.side_effect = RuntimeError("Failed to initialize Firebase")
        self.assertEqual(ClaimsService().issue('u1', Plan.PAID), 'Failed to initialize Firebase')

if __name__ == '__main__':
    unittest.main()
