"""
Activity Core
AI module — LLM access for duplicate arbitration.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, timeout)
    - dedup_oracle: batch duplicate decisions over activity pairs
"""
