# Verification of the session tokens issued by the hosted identity provider (Firebase Authentication)
from typing import Optional
import logging
import google.auth.exceptions
import google.auth.transport.requests
from google.oauth2 import id_token

logger = logging.getLogger(__name__)

SESSION_COOKIE = 'session-token'


class FirebaseIdentity:

    def __init__(self, project_id: str, request=None):
        self.project_id = project_id
        # Caches Google's public certificates between verifications
        self._request = request or google.auth.transport.requests.Request()

    def verify_session_token(self, token: Optional[str]) -> Optional[dict]:
        """
        Returns the signed-in user's claims as {"uid", "email", "name"}, or None when the token is missing, expired or forged.
        """
        if not token:
            return None
        try:
            claims = id_token.verify_firebase_token(token, self._request, audience=self.project_id)
        except (ValueError, google.auth.exceptions.GoogleAuthError) as e:
            logger.info(f"Rejected session token: {e}")
            return None
        if not claims:
            return None
        return {
            "uid": claims.get("user_id") or claims.get("sub"),
            "email": claims.get("email", ""),
            "name": claims.get("name", ""),
        }
