"""auth/ -- Authentication and authorization core for AuthGate.

Layer rule: auth/ imports only stdlib + third-party libraries (and fastapi in
dependencies.py). It does NOT import from api/ or mail/; api/main.py wires the
concrete store, codec, issuer and notifier into AuthService.
"""
