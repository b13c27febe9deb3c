"""registry/ -- OAuth client registrations, external auth providers and the
redirect URI policy.

Layer rule: registry/ imports from core/, audit/ and auth/tokens.py. It does
NOT import from api/.
"""
