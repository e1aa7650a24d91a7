"""auth/ -- Authentication core for AuthGate.

Credential verification, token lifecycle, revocation, lockout and rate
limiting live here. auth/engine.py is the orchestrator; every other module
is a leaf it wires together.

Layer rule: auth/ may import from core/ (the kernel) but never from api/.
api/ imports from auth/, not the other way around.
"""
