"""auth/ -- Session credentials, auth lifecycle and route guarding for Inbook.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/, web/ or social/.
api/ and web/ import from auth/, not the other way around.
"""
