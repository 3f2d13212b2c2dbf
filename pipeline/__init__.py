"""
AirSync — Hourly Ingestion Pipeline Package.

Components:
    - ingestion: OpenAQ v3 client, payload schemas, retry/backoff,
      site matcher and site population sync
    - sync: partition planner, batch runner, per-site processor,
      idempotent measurement writer, checkpoint store, job orchestration
"""
