from .ip_lookup import IPLookupService, IPLookupError, get_ip_lookup

__all__ = ["IPLookupService", "IPLookupError", "get_ip_lookup"]
