"""auth/ -- Authentication and session management package for LearnHub.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. cache/ types are referenced for typing only.
api/ imports from auth/, not the other way around.
"""
