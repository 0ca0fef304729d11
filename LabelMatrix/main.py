from contextlib import asynccontextmanager
import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from LabelMatrix import __version__
from LabelMatrix.config.print_config import PrintConfig
from LabelMatrix.handlers.exception_handlers import register_exception_handlers
from LabelMatrix.printers.drivers.mock import MockPrinter
from LabelMatrix.printers.driver_factory import create_driver
from LabelMatrix.routers import print_routes, printer_routes
from LabelMatrix.services.printer.batch_coordinator import BatchCoordinator
from LabelMatrix.services.printer.print_job_manager import PrintJobManager
from LabelMatrix.services.printer.printer_detector import PrinterDetector, default_probes
from LabelMatrix.services.printer.printer_registry import PrinterRegistry
from LabelMatrix.services.printer.qr_label_service import InMemoryTransactionSource, QRLabelService, TransactionSource

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


def create_app(config: PrintConfig = None, transaction_source: TransactionSource = None) -> FastAPI:
    """Build the app with its registry, detector, job manager and batch coordinator."""
    config = config or PrintConfig.from_env()
    transaction_source = transaction_source or InMemoryTransactionSource()

    registry = PrinterRegistry(driver_factory=create_driver)
    detector = PrinterDetector(default_probes(config), timeout_seconds=config.probe_timeout_seconds,
                               registry=registry)
    label_service = QRLabelService(transaction_source)
    job_manager = PrintJobManager(registry, compositor=label_service.compositor, config=config)
    batch_coordinator = BatchCoordinator(label_service, job_manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up...")
        if config.register_mock_printer:
            registry.register_driver(MockPrinter())
            logger.info("Mock printer registered")

        await job_manager.start()
        yield

        logger.info("Shutting down print job manager...")
        await job_manager.shutdown()

    app = FastAPI(
        title="LabelMatrix",
        description="Warehouse box label printing: QR payloads, label composition and print job queueing.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.print_config = config
    app.state.printer_registry = registry
    app.state.printer_detector = detector
    app.state.label_service = label_service
    app.state.job_manager = job_manager
    app.state.batch_coordinator = batch_coordinator

    register_exception_handlers(app)

    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(print_routes.router, prefix="/api/print", tags=["print"])
    app.include_router(printer_routes.router, prefix="/api/printers", tags=["printers"])
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("LabelMatrix.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8080")), reload=False)
