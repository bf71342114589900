"""auth/ -- Identity, credentials and role-based authorization for Orbit Auth.

Layer rule: auth/ imports from core/ plus stdlib and third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
auth/dependencies.py is the only module here that imports fastapi.
"""
