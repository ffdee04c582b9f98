"""
Modules internal to zmssl.

This package contains modules that are not considered part of zmssl's public API.
They may be changed without updating zmssl's major version.
"""
