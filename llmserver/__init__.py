"""Model configuration and instance management, token estimation, tone synthesis and knowledge-graph enrichment."""

__version__ = "0.1.1"