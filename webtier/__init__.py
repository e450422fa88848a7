"""
webtier — a self-healing, load-balanced web tier.

A pool of members kept within size bounds, probed for health, and
fronted by a path-routing traffic director.
"""

__version__ = "0.1.0"
