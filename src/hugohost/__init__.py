"""Deployment pipeline that turns a blog request into a hosted Hugo site.

This package provides:
- A per-deployment state machine with in-memory and PostgreSQL stores
- GitHub repository provisioning and Git Data API commits
- Hugo site scaffolding and post publishing
- Cloudflare Pages project provisioning
- An LLM-backed hugo.toml assistant
- A FastAPI service exposing the pipeline
"""
