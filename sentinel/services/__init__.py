"""
Services layer - business logic lives here, never in routes.

DESIGN PRINCIPLE:
- The repository is the only code that talks to the store
- Ingestion, query and risk scoring are pure over the canonical collection
- The vote ledger owns every counter mutation
"""
