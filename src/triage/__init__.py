"""Issue triage pipeline for GitHub repositories.

This package classifies a repository's open issues and orders them for
implementation:
- Label and keyword heuristics with duplicate detection by title
- Batched LLM classification under a concurrency cap and timeout
- Merge of heuristic and LLM results, then priority ranking
- GitHub fetching, per-repository caching and an HTTP surface
"""
