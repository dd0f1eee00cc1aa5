"""
Regulation Validator — certainty-scored validation of client-held regulation text.

Architecture: Classify → Route (remote tiers, local fallback) → Merge → Certainty gate → Attest
Philosophy:  A failing dependency lowers confidence. It never fails the request.
"""

__version__ = "1.0.0"
