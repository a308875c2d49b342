"""
Configuration modules for Jarvis
- logging_config: tiered logging with per-module overrides
- voice: voice engine timeouts, queue bounds and agent settings
"""

from .logging_config import configure_logging, get_logger
from .voice import VoiceEngineConfig, get_voice_config, load_voice_config, reset_voice_config

__all__ = [
    "configure_logging",
    "get_logger",
    "VoiceEngineConfig",
    "get_voice_config",
    "load_voice_config",
    "reset_voice_config",
]
