"""
Claims package: navigates verified claim maps by path to find a role.
"""

from .extractor import extract_claim

__all__ = ["extract_claim"]
