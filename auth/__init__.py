"""auth/ -- API key credentials and request authentication for idcore.

Layer rule: auth/ imports from core/ and audit/ (and registry/models.py for
OAuth client configuration). It does NOT import from api/. api/ imports from
auth/, not the other way around.
"""
