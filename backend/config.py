"""
Configuration for the reflection backend.

Values come from environment variables, read once at import.
Entry points pass them into constructors explicitly.
"""

import os


class Settings:
    """Configuration for the reflection service"""

    # Model Configuration
    MODEL_NAME = os.getenv('PANIA_MODEL_NAME', 'mistralai/Mistral-7B-Instruct-v0.2')
    LOAD_IN_4BIT = os.getenv('PANIA_LOAD_IN_4BIT', 'true').lower() == 'true'
    DEVICE = os.getenv('PANIA_DEVICE', 'cuda')

    # Generation Settings
    CLARIFY_TEMPERATURE = float(os.getenv('PANIA_CLARIFY_TEMPERATURE', 0.7))
    CLARIFY_MAX_TOKENS = int(os.getenv('PANIA_CLARIFY_MAX_TOKENS', 256))
    WISDOM_TEMPERATURE = float(os.getenv('PANIA_WISDOM_TEMPERATURE', 0.7))
    WISDOM_MAX_TOKENS = int(os.getenv('PANIA_WISDOM_MAX_TOKENS', 1024))
    ACKNOWLEDGMENT_TEMPERATURE = float(os.getenv('PANIA_ACKNOWLEDGMENT_TEMPERATURE', 0.7))
    ACKNOWLEDGMENT_MAX_TOKENS = int(os.getenv('PANIA_ACKNOWLEDGMENT_MAX_TOKENS', 256))
    INTENT_TEMPERATURE = float(os.getenv('PANIA_INTENT_TEMPERATURE', 0.0))
    INTENT_MAX_TOKENS = int(os.getenv('PANIA_INTENT_MAX_TOKENS', 64))

    # Journal
    JOURNAL_DIR = os.getenv('PANIA_JOURNAL_DIR', 'outputs/journal')

    # Service Configuration
    SERVICE_HOST = os.getenv('PANIA_HOST', '0.0.0.0')
    SERVICE_PORT = int(os.getenv('PANIA_PORT', 8080))
    USER_ID_HEADER = os.getenv('PANIA_USER_ID_HEADER', 'X-User-Id')
    USER_NAME_HEADER = os.getenv('PANIA_USER_NAME_HEADER', 'X-User-Name')

    # Console harness
    DEFAULT_USER_NAME = os.getenv('PANIA_DEFAULT_USER_NAME', 'Friend')

    # Logging Configuration
    LOG_LEVEL = os.getenv('PANIA_LOG_LEVEL', 'INFO')
    LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
