"""HTTP challenge server component."""

from .server import create_challenge_app, ACME_CHALLENGE_PREFIX

__all__ = ['create_challenge_app', 'ACME_CHALLENGE_PREFIX']
