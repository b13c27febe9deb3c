"""audit/ -- Append-only audit trail for idcore.

Layer rule: audit/ imports only from core/ plus stdlib and third-party
libraries. auth/, registry/ and api/ import from audit/, not the other way
around.
"""
