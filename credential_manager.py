"""
Credential management for third-party services (SendGrid mail, Google OAuth).
Environment variables win over files; secrets written by the CMS are stored
base64 encoded with a simple obfuscation so they are not plain text on disk.
"""

import base64
import binascii
import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class CredentialManager:
    def __init__(self, credentials_file='var/config/credentials.json',
                 encoded_credentials_file='var/config/credentials.enc'):
        self.credentials_file = credentials_file
        self.encoded_credentials_file = encoded_credentials_file

    def _encode_credentials(self, credentials: Dict) -> str:
        """Encode credentials using base64 with simple obfuscation"""
        json_str = json.dumps(credentials, indent=2)
        # Reverse the string before encoding
        return base64.b64encode(json_str[::-1].encode()).decode()

    def _decode_credentials(self, encoded_str: str) -> Dict:
        """Decode credentials from base64 with deobfuscation"""
        try:
            decoded = base64.b64decode(encoded_str.encode()).decode()
            return json.loads(decoded[::-1])
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            logger.error(f"Error decoding credentials: {e}")
            return {}

    def _load_plain(self) -> Dict:
        if not os.path.exists(self.credentials_file):
            return {}
        try:
            with open(self.credentials_file, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading credentials: {e}")
            return {}

    def _load_encoded(self) -> Dict:
        if not os.path.exists(self.encoded_credentials_file):
            return {}
        try:
            with open(self.encoded_credentials_file, 'r') as f:
                return self._decode_credentials(f.read().strip())
        except OSError as e:
            logger.error(f"Error loading encoded credentials: {e}")
            return {}

    def get_sendgrid_api_key(self) -> Optional[str]:
        """SendGrid API key from SENDGRID_API_KEY, the encoded store or credentials.json"""
        api_key = os.environ.get('SENDGRID_API_KEY')
        if api_key:
            return api_key
        api_key = self._load_encoded().get('sendgrid', {}).get('api_key')
        if api_key:
            return api_key
        return self._load_plain().get('sendgrid', {}).get('api_key') or None

    def get_google_credentials(self, fallback: Optional[Dict] = None) -> Dict[str, str]:
        """Google OAuth client: environment, then credentials.json, then the site config"""
        fallback = fallback or {}
        stored = self._load_plain().get('google', {})
        return {
            'client_id': os.environ.get('GOOGLE_CLIENT_ID') or stored.get('client_id') or fallback.get('client_id', ''),
            'client_secret': (os.environ.get('GOOGLE_CLIENT_SECRET') or stored.get('client_secret')
                              or fallback.get('client_secret', '')),
        }

    def save_sendgrid_api_key(self, api_key: str):
        """Store the SendGrid API key in encoded format"""
        credentials = self._load_encoded()
        credentials['sendgrid'] = {'api_key': api_key}

        os.makedirs(os.path.dirname(self.encoded_credentials_file) or '.', exist_ok=True)
        with open(self.encoded_credentials_file, 'w') as f:
            f.write(self._encode_credentials(credentials))

        logger.info("SendGrid API key saved")

    def update_google_credentials(self, client_id: str, client_secret: str):
        """Update the Google OAuth client in the regular credentials file"""
        credentials = self._load_plain()
        credentials['google'] = {'client_id': client_id, 'client_secret': client_secret}

        os.makedirs(os.path.dirname(self.credentials_file) or '.', exist_ok=True)
        with open(self.credentials_file, 'w') as f:
            json.dump(credentials, f, indent=2)

        logger.info("Google OAuth credentials updated")
