"""
Heuristic candidate extraction from conversation payloads.
"""

from .service import CandidateExtractor, candidate_extractor

__all__ = ["CandidateExtractor", "candidate_extractor"]
