"""auth/ -- Identity, credentials, field encryption and RBAC for SecureCMS.

Layer rule: auth/ imports from core/, db/ and audit/, plus third-party
libraries. It does NOT import from api/ or content/.
api/ imports from auth/, not the other way around.
"""
