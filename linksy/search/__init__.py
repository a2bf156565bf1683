"""
Linksy Provider Search

Natural-language search over the referral directory.

Modules:
    pipeline      — Orchestrates one search end to end
    gate          — Host exclusion terms, access, budget and rate limit
    rate_limit    — Redis sliding-window limiter
    geocode       — Google Geocoding adapter and location resolution
    embeddings    — OpenAI embedding calls and need text builder
    needs         — pgvector need matching
    proximity     — Ring search and distance ranking
    service_area  — ZIP code service-area filter
    summarizer    — LLM / template conversational message
    accounting    — Session and host usage recording
    crisis        — Crisis keyword detection
    indexer       — Need embeddings, context cards, location geocoding
    tasks         — Celery tasks for usage counters and index maintenance
    errors        — Exceptions mapped to HTTP statuses
"""
