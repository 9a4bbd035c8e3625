"""Rendering of recommendations for humans and kubectl"""

from .patches import ResourcePair, ResourcePatch

__all__ = ['ResourcePair', 'ResourcePatch']
