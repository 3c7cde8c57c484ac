"""
External integrations.

Modules:
- ai_gateway: OpenAI-compatible chat-completions client with retry/backoff
"""
from .ai_gateway import AIGatewayClient, extract_json_object

__all__ = ["AIGatewayClient", "extract_json_object"]
