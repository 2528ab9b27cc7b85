"""Roles, permission rules and the confirmation gate."""
