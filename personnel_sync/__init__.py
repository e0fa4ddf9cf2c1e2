"""
Personnel Sync - Reconcile a destination people directory against a source of truth.

This package computes the create/update/delete operations needed to make a
destination directory (helpdesk, groupware contacts, admin directory) match a
source roster (REST API, LDAP) and applies them at a rate the destination accepts.
"""

__version__ = "1.0.0"
__author__ = "Personnel Sync Team"
