"""challenges/ -- One-time code generation and the active-challenge store.

Layer rule: challenges/ imports only stdlib and core/. It knows nothing about
identities, HTTP, or email delivery.
"""
