"""
Services module for business logic separation.

This module contains the attribution pipeline (events, partition routing,
background writing), the ingestion facade and the statistics service,
keeping them separate from API endpoints and database models.
"""
