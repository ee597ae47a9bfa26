from .command_server import CommandServer, parse_command_inputs

__all__ = ["CommandServer", "parse_command_inputs"]
