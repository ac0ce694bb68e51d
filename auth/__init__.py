"""auth/ -- Identities, password hashing, session tokens, and the flows that tie them together.

Layer rule: auth/ imports stdlib, third-party libraries, core/, challenges/
and notify/. It does NOT import from api/. Only auth/dependencies.py knows
about FastAPI. api/ imports from auth/, not the other way around.
"""
