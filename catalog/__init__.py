"""catalog/ -- Toy listings and their comments.

Layer rule: catalog/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/.
"""
