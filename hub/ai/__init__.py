"""LLM gateway, prompt builders and response-block parsers."""
