"""auth/ -- Identity providers, tokens and the FastAPI authorization guard.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/ or directory/ (auth/dependencies.py reaches the
directory through request.app.state, not through an import).
"""
