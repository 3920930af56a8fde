"""Web service host for the horm management console: configuration, HTTP codec and transport, services and server."""

__version__ = "0.0.1.dev0"