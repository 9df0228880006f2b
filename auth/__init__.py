"""auth/ -- Authentication core for authguard.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
