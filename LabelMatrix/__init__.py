"""
LabelMatrix - Warehouse box label print pipeline
"""

__version__ = "0.3.0"
__payload_version__ = "QR1"  # Compact QR payload format tag
