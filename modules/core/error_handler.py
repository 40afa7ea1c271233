"""
Error handling module for the Budget Buckets application.
This module provides consistent error handling across the application.
"""

from config.environment import Environment
import logging
import traceback
from functools import wraps
import time

# Configure logging
logging.basicConfig(
    level=Environment.LOGGING_CONFIG['level'],
    format=Environment.LOGGING_CONFIG['format']
)
if Environment.LOGGING_CONFIG.get('file'):
    _file_handler = logging.FileHandler(Environment.LOGGING_CONFIG['file'])
    _file_handler.setFormatter(logging.Formatter(Environment.LOGGING_CONFIG['format']))
    logging.getLogger().addHandler(_file_handler)

logger = logging.getLogger(__name__)

class AppError(Exception):
    """Base exception class for application errors"""
    def __init__(self, message, error_code=None, details=None):
        self.message = message
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class DatabaseError(AppError):
    """Database-related errors"""
    pass

class TransientStorageError(DatabaseError):
    """Retryable storage failure: contention exhausted or backend unavailable"""
    def __init__(self, message, details=None):
        super().__init__(message, error_code="STORAGE_UNAVAILABLE", details=details)

class AuthenticationError(AppError):
    """Authentication-related errors"""
    pass

class ValidationError(AppError):
    """Data validation errors"""
    pass

class BillingProviderError(AppError):
    """Payment provider errors"""
    pass

class CapacityExceededError(AppError):
    """Free plan bucket cap reached. Expected, user-facing condition."""
    def __init__(self, plan, total, limit):
        self.plan = plan
        self.total = total
        self.limit = limit
        super().__init__(
            f"Bucket limit of {limit} reached on the {plan} plan",
            error_code="capacity_exceeded",
            details={'plan': plan, 'total': total, 'limit': limit}
        )

def handle_error(func):
    """
    Decorator for consistent error handling

    Args:
        func: Function to wrap with error handling

    Returns:
        Wrapped function with error handling
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AppError as e:
            # Log application-specific errors
            logger.error(f"Application error: {e.message}")
            if Environment.DEBUG_MODE:
                logger.error(f"Error details: {e.details}")
            raise
        except Exception as e:
            # Log unexpected errors
            logger.error(f"Unexpected error: {str(e)}")
            if Environment.DEBUG_MODE:
                logger.error(f"Traceback: {traceback.format_exc()}")
            raise AppError(
                "An unexpected error occurred",
                error_code="UNEXPECTED_ERROR",
                details=str(e)
            ) from e
    return wrapper

def retry_on_error(max_retries=None, delay=1, exceptions=(Exception,)):
    """
    Decorator for retrying operations on failure

    Args:
        max_retries: Maximum number of retry attempts
        delay: Delay between retries in seconds
        exceptions: Exception types that trigger a retry

    Returns:
        Wrapped function with retry logic
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            retries = max_retries or Environment.ERROR_HANDLING['max_retries']

            for attempt in range(retries):
                try:
                    return func(*args, **kwargs)
                except exceptions:
                    if attempt < retries - 1:
                        logger.warning(f"Attempt {attempt + 1} of {func.__name__} failed, retrying...")
                        time.sleep(delay)
                    else:
                        logger.error(f"All {retries} attempts of {func.__name__} failed")
                        raise
        return wrapper
    return decorator

def log_error(error, context=None):
    """
    Log an error with context

    Args:
        error: The error to log
        context: Additional context information
    """
    error_message = str(error)
    if context:
        error_message += f" | Context: {context}"

    logger.error(error_message)
    if Environment.DEBUG_MODE:
        logger.error(f"Traceback: {traceback.format_exc()}")

    return {
        'success': False,
        'message': str(error),
        'error_code': getattr(error, 'error_code', None) or 'UNKNOWN_ERROR',
        'details': getattr(error, 'details', None) if Environment.DEBUG_MODE else None
    }
