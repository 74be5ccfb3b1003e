"""Custom exceptions for loopd."""


class LoopdError(Exception):
    """Base exception for loopd operations."""


class FetchError(LoopdError):
    """Error while fetching a remote resource."""


class ContentNotFoundError(LoopdError):
    """No content-bearing root element exists on the page."""


class BrowserError(LoopdError):
    """The browser session could not load or drive the page."""


class ConversionError(LoopdError):
    """Invalid input handed to the DOM converter."""


class BundleError(LoopdError):
    """Export bundle is malformed or incomplete."""
