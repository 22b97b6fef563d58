"""AI enrichment of stored messages."""

from .dispatcher import DeadLetter, EnrichmentDispatcher
from .schemas import EnrichmentResult
from .service import EnrichmentService

__all__ = ["DeadLetter", "EnrichmentDispatcher", "EnrichmentResult", "EnrichmentService"]
