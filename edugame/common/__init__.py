"""
Common Components for EduGame

Infrastructure shared across the engine:
1. Logging - Centralized logging configuration
2. Error Handling - Error taxonomy, retry and error logging utilities
3. Serialization - Conversion of domain objects to JSON-compatible data
"""

from edugame.common.logger import app_logger
