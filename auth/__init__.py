"""auth/ -- Authentication, session lifecycle and authorization for Atomic Systems.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or habits/.
api/ imports from auth/, not the other way around.
"""
