# src/osmium_hub/utils/exceptions.py

class OsmiumHubError(Exception):
    """Base exception class for Osmium Hub"""
    pass

class ConfigurationError(OsmiumHubError):
    """Raised when there are issues with configuration"""
    pass

class InitializationError(OsmiumHubError):
    """Raised when component initialization fails"""
    pass

class ValidationError(OsmiumHubError):
    """Raised when a required field is missing or malformed, before any state changes"""
    pass

class NotFoundError(OsmiumHubError):
    """Raised when an operation targets an unknown schedule"""
    pass

class CommunicationError(OsmiumHubError):
    """Raised when communication with external services fails"""
    pass

class TransportError(CommunicationError):
    """Raised when a command could not be handed to the push channel"""
    pass
