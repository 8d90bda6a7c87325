"""
Services layer - core business logic for Feedwatch.

1. Data Ingestion (data_ingestion/):
   - Feed discovery and validation
   - Scraping and external AI extraction
   - Content extraction, cleaning and date recovery
   - Scheduled and manual ingestion passes

2. Summarization (summarization.py):
   - LLM-powered summaries and dashboard hooks
"""

from feedwatch.services.summarization import SummarizationService

__all__ = [
    "SummarizationService",
]
