# Unit test configuration - no hardware, no network.
# Printers are MockPrinter instances; transactions come from an in-memory source.

import pytest

from LabelMatrix.config.print_config import PrintConfig
from LabelMatrix.models.qr_models import ArticleRecord, BoxRecord, TransactionRecord
from LabelMatrix.printers.drivers.mock import MockPrinter
from LabelMatrix.services.printer.label_compositor import LabelCompositor
from LabelMatrix.services.printer.payload_codec import PayloadCodec
from LabelMatrix.services.printer.print_job_manager import PrintJobManager
from LabelMatrix.services.printer.printer_registry import PrinterRegistry
from LabelMatrix.services.printer.qr_label_service import InMemoryTransactionSource, QRLabelService


def make_transaction(transaction_no="INW-0001", company="Acme Foods",
                     net_weights=(10.0, 12.5, 8.25), gross_weights=(10.5, 13.0, 8.75),
                     header_totals=True, **overrides) -> TransactionRecord:
    """Inward transaction with one article and one box per weight pair."""
    boxes = [
        BoxRecord(box_number=i + 1, article_description="Basmati Rice", net_weight=net, gross_weight=gross)
        for i, (net, gross) in enumerate(zip(net_weights, gross_weights))
    ]
    values = dict(
        transaction_no=transaction_no,
        company=company,
        entry_date="2024-07-15",
        vendor_name="Green Valley Farms",
        customer_name="",
        approval_authority=None,
        net_weight=sum(net_weights) if header_totals else None,
        total_weight=sum(gross_weights) if header_totals else None,
        articles=[
            ArticleRecord(
                item_description="Basmati Rice",
                sku_id=1042,
                batch_number="B-2024-07",
                manufacturing_date="2024-06-01",
                expiry_date="2025-06-01",
            )
        ],
        boxes=boxes,
    )
    values.update(overrides)
    return TransactionRecord(**values)


@pytest.fixture
def transaction():
    return make_transaction()


@pytest.fixture
def second_transaction():
    return make_transaction("INW-0002", net_weights=(5.0, 6.0), gross_weights=(5.5, 6.4))


@pytest.fixture
def codec():
    return PayloadCodec()


@pytest.fixture
def compositor(codec):
    return LabelCompositor(codec)


@pytest.fixture
def transaction_source(transaction, second_transaction):
    return InMemoryTransactionSource([transaction, second_transaction])


@pytest.fixture
def label_service(transaction_source, codec, compositor):
    return QRLabelService(transaction_source, codec=codec, compositor=compositor)


@pytest.fixture
def mock_printer():
    return MockPrinter(name="Mock Printer", print_delay=0, render=False)


@pytest.fixture
def registry(mock_printer):
    registry = PrinterRegistry()
    registry.register_driver(mock_printer)
    return registry


@pytest.fixture
def config():
    return PrintConfig(auto_dispatch=False, shutdown_drain_seconds=1.0)


@pytest.fixture
def job_manager(registry, compositor, config):
    return PrintJobManager(registry, compositor=compositor, config=config)


@pytest.fixture
def labels(label_service, transaction):
    """Labels for all three boxes of the sample transaction."""
    built, _ = label_service.build_labels(transaction, [1, 2, 3])
    return built
