"""
Tiered Logging Configuration for Jarvis

Provides a flexible logging system with 5 levels:
- TRACE (5): Ultra-verbose debugging (raw frames, every packet)
- DEBUG (10): Detailed debugging (state transitions, queue changes)
- INFO (20): Standard operational messages (connections, track starts)
- WARN (30): Warnings (dropped frames, skipped tracks)
- ERROR (40): Errors (exceptions, teardown triggers)

Environment Variables:
- LOG_LEVEL: Global log level (TRACE, DEBUG, INFO, WARN, ERROR) [default: INFO]
- LOG_LEVEL_VOICE: Override for transport, connection lifecycle and resampling
- LOG_LEVEL_MUSIC: Override for the playback queue engine
- LOG_LEVEL_SPEECH: Override for the speech relay and conversational AI client
- LOG_LEVEL_SESSION: Override for session registry and session teardown
- LOG_LEVEL_DISCORD: Override for the Discord bot

Example Usage:
    from jarvis.config.logging_config import get_logger

    logger = get_logger(__name__)
    logger.trace("🔍 Raw PCM frame: %d bytes", len(frame))
    logger.debug("🎚️ Activity state IDLE -> MUSIC")
    logger.info("✅ Voice transport ready")
    logger.warning("⚠️ Speech queue full, dropping frame")
    logger.error("❌ Transport lost: %s", error)
"""

import logging
import os


# Define custom TRACE level (more verbose than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log a message with severity 'TRACE'."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


# Add trace method to Logger class
logging.Logger.trace = trace


# Module name mapping: Python module path → Logical service name
MODULE_NAME_MAP = {
    "jarvis.voice.activity": "jarvis.session",
    "jarvis.voice.connection": "jarvis.voice",
    "jarvis.voice.transport": "jarvis.voice",
    "jarvis.voice.resampler": "jarvis.voice",
    "jarvis.voice.pcm_source": "jarvis.voice",
    "jarvis.voice.receiver": "jarvis.speech",
    "jarvis.services.playback_queue": "jarvis.music",
    "jarvis.services.speech_relay": "jarvis.speech",
    "jarvis.services.conversation_client": "jarvis.speech",
    "jarvis.services.voice_session": "jarvis.session",
    "jarvis.services.session_registry": "jarvis.session",
    "jarvis.utils.retry": "jarvis.session",
    "jarvis.discord_bot": "jarvis.discord",
}

MODULE_OVERRIDES = ["VOICE", "MUSIC", "SPEECH", "SESSION", "DISCORD"]


def get_log_level(module_name: str, default: str = "INFO") -> int:
    """
    Get the log level for a module, checking both module-specific and global env vars.

    Priority:
    1. Module-specific env var (LOG_LEVEL_VOICE, LOG_LEVEL_MUSIC, etc.)
    2. Global LOG_LEVEL env var
    3. Default level (INFO)

    Args:
        module_name: Python module name (e.g., "jarvis.services.playback_queue")
        default: Default log level if no env vars set

    Returns:
        Numeric log level (5=TRACE, 10=DEBUG, 20=INFO, 30=WARN, 40=ERROR)
    """
    logical_name = MODULE_NAME_MAP.get(module_name, module_name)

    # "jarvis.music" → "MUSIC"
    if "." in logical_name:
        service_name = logical_name.split(".")[-1].upper()
    else:
        service_name = None

    if service_name:
        module_level = os.getenv(f"LOG_LEVEL_{service_name}")
        if module_level:
            return _parse_log_level(module_level)

    global_level = os.getenv("LOG_LEVEL")
    if global_level:
        return _parse_log_level(global_level)

    return _parse_log_level(default)


def _parse_log_level(level_str: str) -> int:
    """
    Parse log level string to numeric value.

    Unknown names fall back to INFO.
    """
    level_map = {
        "TRACE": TRACE,
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def configure_logging(default_level: str = "INFO") -> None:
    """
    Configure logging system with tiered levels and per-module control.

    This should be called once at application startup (see jarvis.discord_bot).

    Args:
        default_level: Default log level if LOG_LEVEL env var not set
    """
    global_level = os.getenv("LOG_LEVEL", default_level)
    numeric_level = _parse_log_level(global_level)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.info(f"🚀 Logging system initialized (global level: {global_level})")

    module_overrides = []
    for env_var in MODULE_OVERRIDES:
        override = os.getenv(f"LOG_LEVEL_{env_var}")
        if override:
            module_overrides.append(f"{env_var}={override}")

    if module_overrides:
        root_logger.info(f"📋 Module overrides: {', '.join(module_overrides)}")


def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for a module with appropriate log level.

    This is the main entry point for getting loggers in Jarvis code.

    Args:
        module_name: Python module name (use __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(module_name)
    logger.setLevel(get_log_level(module_name))
    return logger
