"""Lifecycle services: credentials, identities, sessions, tokens and email."""
