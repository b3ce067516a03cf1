"""Messages API relay with per-request upstream credentials"""

__version__ = "1.0.0"
