from .driver import ZPLPrinter, parse_tcp_identifier, parse_bluetooth_identifier

__all__ = ["ZPLPrinter", "parse_tcp_identifier", "parse_bluetooth_identifier"]
