"""Gatekeepr: role-based access control, access requests and audit trail."""
