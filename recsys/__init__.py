"""
Recommendation System Package.

This package contains the wine recommendation core:
- Collaborative filtering (user-based and item-based) over diner ratings
- Model artifact versioning, validation, migration and fallback

Submodules:
    cf: Collaborative filtering module with similarity, rating store, registry
"""

__all__ = ['cf']
