"""
Authentication application.

Provides the email-based custom User model used as payer, provider and
administrator throughout the escrow subsystem. Login, registration and
session management are handled by the JWT/session authentication classes
configured in settings.

Usage:
    from authentication.models import User
"""
