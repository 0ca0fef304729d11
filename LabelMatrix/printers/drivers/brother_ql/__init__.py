from .driver import BrotherQLPrinter

__all__ = ["BrotherQLPrinter"]
