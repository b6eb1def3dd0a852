"""Registry — the versioned source of truth for references and bundles.

The registry layer provides:
- Storage: one index plus a content cache per registry, committed to git
- Composition: the local registry layered over read-only remote registries
- Resolution: one lookup for references and bundles, local names first
- Discovery: listing and content search across registries
"""
