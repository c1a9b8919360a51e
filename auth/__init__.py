"""auth/ -- Identity, credential and session package for tenant-iam.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, tenancy/, audit/, or mailer/.
api/ and tenancy/ import from auth/, not the other way around.
"""
