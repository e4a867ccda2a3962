"""skilld - versioned local mirror of package documentation.

Resolves the best documentation source for a package, caches it under a
version-keyed directory and records installed skills in a lockfile.
"""

__version__ = "0.4.0"
