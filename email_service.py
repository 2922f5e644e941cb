#!/usr/bin/env python3
"""
Email Service - one-time login codes for the CMS and contact form
notifications, sent through the SendGrid v3 HTTP API
"""

import logging
import secrets
from datetime import datetime, timedelta

import requests

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = 'https://api.sendgrid.com/v3/mail/send'
EXTERNAL_API_TIMEOUT_SECONDS = 10


def generate_otp():
    """Generate a 6-digit one-time code"""
    return f"{secrets.randbelow(900000) + 100000}"


def get_otp_expiry(minutes=10):
    """Expiry time for a code issued now"""
    return datetime.now() + timedelta(minutes=minutes)


class EmailService:
    def __init__(self, credential_manager, from_address='noreply@playinmo.com',
                 contact_inbox='support@playinmo.com'):
        self.credential_manager = credential_manager
        self.from_address = from_address
        self.contact_inbox = contact_inbox

    def send(self, to, subject, text, html=None):
        """Send one message; returns False instead of raising on failure"""
        api_key = self.credential_manager.get_sendgrid_api_key()
        if not api_key:
            logger.error(f"SendGrid API key missing, email to {to} not sent")
            return False

        content = [{'type': 'text/plain', 'value': text}]
        if html:
            content.append({'type': 'text/html', 'value': html})
        payload = {
            'personalizations': [{'to': [{'email': to}]}],
            'from': {'email': self.from_address},
            'subject': subject,
            'content': content,
        }

        try:
            response = requests.post(
                SENDGRID_SEND_URL,
                json=payload,
                headers={'Authorization': f'Bearer {api_key}'},
                timeout=EXTERNAL_API_TIMEOUT_SECONDS
            )
        except requests.RequestException as e:
            logger.error(f"Error sending email: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"SendGrid rejected email to {to}: HTTP {response.status_code} {response.text[:200]}")
            return False
        return True

    def send_otp_email(self, email, otp, expiry_minutes=10):
        """Send the CMS login code"""
        text = f"Your verification code is: {otp}. It will expire in {expiry_minutes} minutes."
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h1 style="color: #6d28d9; text-align: center;">PlayinMO CMS</h1>
          <div style="padding: 20px; border: 1px solid #e5e7eb; border-radius: 8px;">
            <h2>Your Login Verification Code</h2>
            <p>Please use the following code to login to the PlayinMO CMS:</p>
            <div style="background-color: #f3f4f6; padding: 15px; text-align: center; font-size: 24px; letter-spacing: 5px; font-weight: bold;">
              {otp}
            </div>
            <p>This code will expire in {expiry_minutes} minutes.</p>
            <p style="color: #6b7280; font-size: 14px;">If you didn't request this code, please ignore this email.</p>
          </div>
        </div>
        """
        return self.send(email, 'Your PlayinMO CMS Login Code', text, html)

    def send_contact_notification(self, message):
        """Forward a contact form submission to the support inbox"""
        subject = f"[Contact] {message.get('subject') or 'New message'} - {message['name']}"
        text = (
            f"From: {message['name']} <{message['email']}>\n"
            f"Received: {message.get('createdAt', '')}\n\n"
            f"{message['message']}"
        )
        return self.send(self.contact_inbox, subject, text)
