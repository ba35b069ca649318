"""
Silo Linker - internal link generation for content silos.

Plans a silo's link topology (linear, chained, cross-linking, star hub,
hub chain, contextual or custom), picks anchor text with Claude or lexical
heuristics, and writes reversible marker-wrapped links into node bodies.
"""

__version__ = "1.0.0"
