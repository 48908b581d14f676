# FILE: atelier/memory/__init__.py
from atelier.memory.conversation import ConversationMemory, run_reset_poller

__all__ = ["ConversationMemory", "run_reset_poller"]
