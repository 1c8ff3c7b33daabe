"""
Jira Project Search MCP Server

An MCP server that resolves free-text Jira project references with:
- Typo-tolerant fuzzy matching of project keys and names
- Cyrillic/Latin transliteration and keyboard-layout variants
- Semantic search over embedded project names (optional)
- A TTL-cached, single-flight project catalog
"""

__version__ = "1.0.0"
__author__ = "AI Development Team"
