"""DNS listeners answering from the RecordStore."""

from .server import DNSServer, build_response, resolve_query_bytes

__all__ = ["DNSServer", "build_response", "resolve_query_bytes"]
