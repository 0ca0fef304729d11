from .driver import MockPrinter

__all__ = ["MockPrinter"]
