# Transport Layer
# HTTP surface over the governance gateway
# Maps session and identity errors to status codes; denials stay decisions

from govgate.transport.app import app

__all__ = ["app"]
