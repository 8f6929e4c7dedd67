"""
Chat Module

Chat controller and outbound message assembly.
"""

from .attachments import build_outbound_text, load_attachment
from .chat_controller import ChatController, generate_thread_id

__all__ = ["ChatController", "build_outbound_text", "generate_thread_id", "load_attachment"]
