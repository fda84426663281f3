# Exceptions raised by TreeForge on top of the ones the wrapped libraries raise.


class TreeForgeError(Exception):
    """Base exception for the package"""
    pass


class UnsupportedOptionError(TreeForgeError, ValueError):
    """Raised when a model, method, format or database name is not recognised"""
    pass


class ExternalToolError(TreeForgeError):
    """Raised when IQ-TREE or RAxML-NG is missing or fails"""
    pass
