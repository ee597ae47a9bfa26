from .videohub import RouterError, VideohubRouter, is_valid_router_host, routing_command

__all__ = ["RouterError", "VideohubRouter", "is_valid_router_host", "routing_command"]
