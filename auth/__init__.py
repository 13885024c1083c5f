"""auth/ -- Authentication and session-token lifecycle package for ResumeAgent.

Layer rule: auth/ imports only stdlib + third-party libraries (and, for
typing only, core.config.Settings). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
