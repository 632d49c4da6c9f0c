from ksiegai.business.posting.facts import FactsValidation, PostingFacts, build_posting_facts, validate_posting_facts
from ksiegai.business.posting.schemas import AutoPostPendingResult, PostingResult, PostingStats

__all__ = [
    "FactsValidation",
    "PostingFacts",
    "build_posting_facts",
    "validate_posting_facts",
    "AutoPostPendingResult",
    "PostingResult",
    "PostingStats",
]
