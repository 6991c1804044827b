"""auth/ -- Access-control core for the supplier portal.

Token codec, credential store, rate limiting, lockout, the three login
strategies (OIDC claims, local password, supplier magic link), scoped
quote-access tokens and the FastAPI guards built on top of them.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, rfq/, or notify/.
api/ imports from auth/, not the other way around.
"""
