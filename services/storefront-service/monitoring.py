"""Monitoring and observability setup.

Traces and metrics are exported over OTLP. When ``TELEMETRY_ENABLED`` is
false no SDK providers are installed and the OpenTelemetry API falls back to
its no-op implementations, so every counter below can still be called.

Exemplars are attached automatically to the histograms (order amount,
payment gateway latency) when they are recorded inside an active trace.
"""
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
import pyroscope

from config import OTEL_EXPORTER_OTLP_ENDPOINT, PYROSCOPE_SERVER, SERVICE_NAME, TELEMETRY_ENABLED

logger = logging.getLogger(__name__)


def init_tracing() -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Returns:
        Tracer instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    tracer_provider = TracerProvider(resource=resource)
    otlp_span_exporter = OTLPSpanExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"Tracing initialized with endpoint: {OTEL_EXPORTER_OTLP_ENDPOINT}")

    return trace.get_tracer(__name__)


def init_metrics() -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Returns:
        Meter instance
    """
    resource = Resource.create({"service.name": SERVICE_NAME})

    otlp_metric_exporter = OTLPMetricExporter(
        endpoint=OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=True
    )
    otlp_metric_reader = PeriodicExportingMetricReader(
        otlp_metric_exporter,
        export_interval_millis=5000
    )

    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[otlp_metric_reader]
    )
    metrics.set_meter_provider(meter_provider)

    logger.info("Metrics initialized with OTLP exporter")

    return metrics.get_meter(__name__)


def init_profiling() -> None:
    """Initialize Pyroscope profiling."""
    if not TELEMETRY_ENABLED:
        return
    try:
        pyroscope.configure(
            application_name=SERVICE_NAME,
            server_address=PYROSCOPE_SERVER,
            tags={"env": "production"}
        )
        logger.info(f"Profiling initialized with server: {PYROSCOPE_SERVER}")
    except Exception as e:
        logger.warning(f"Failed to initialize profiling: {e}")


# Initialize tracer and meter
if TELEMETRY_ENABLED:
    tracer = init_tracing()
    meter = init_metrics()
else:
    tracer = trace.get_tracer(__name__)
    meter = metrics.get_meter(__name__)

# Business metrics using OpenTelemetry

# Catalog metrics
product_views_counter = meter.create_counter(
    "storefront.products.views",
    description="Total number of product catalog listings served",
    unit="1"
)

cart_mutations_counter = meter.create_counter(
    "storefront.cart.mutations",
    description="Cart mutations by operation (add, update, remove, clear)",
    unit="1"
)

# Order lifecycle metrics
orders_created_counter = meter.create_counter(
    "storefront.orders.created",
    description="Total number of orders placed",
    unit="1"
)

orders_failed_counter = meter.create_counter(
    "storefront.orders.failed",
    description="Order placements rolled back, by reason",
    unit="1"
)

order_amount_histogram = meter.create_histogram(
    "storefront.orders.amount",
    description="Order total amount",
    unit="INR"
)

order_status_transitions_counter = meter.create_counter(
    "storefront.orders.status_transitions",
    description="Admin order status changes by source and target status",
    unit="1"
)

inventory_restock_counter = meter.create_counter(
    "storefront.inventory.restocked_units",
    description="Units returned to stock by cancellations and refunds",
    unit="1"
)

# Payment metrics
payment_intents_counter = meter.create_counter(
    "storefront.payments.intents",
    description="Payment intents requested from the gateway, by outcome",
    unit="1"
)

payment_verifications_counter = meter.create_counter(
    "storefront.payments.verifications",
    description="Payment signature verifications, by outcome",
    unit="1"
)

payment_gateway_duration_histogram = meter.create_histogram(
    "storefront.payments.gateway.duration",
    description="Duration of payment gateway calls",
    unit="s"
)

# Catalog administration
category_delete_rejected_counter = meter.create_counter(
    "storefront.categories.delete_rejected",
    description="Category deletions rejected because products still reference them",
    unit="1"
)

# Security monitoring metrics
auth_failures_counter = meter.create_counter(
    "storefront.auth.failures",
    description="Total number of authentication failures",
    unit="1"
)

auth_attempts_counter = meter.create_counter(
    "storefront.auth.attempts",
    description="Total number of authentication attempts",
    unit="1"
)

rate_limit_exceeded_counter = meter.create_counter(
    "storefront.rate_limit.exceeded",
    description="Total number of rate limit violations",
    unit="1"
)

suspicious_activity_counter = meter.create_counter(
    "storefront.security.suspicious_activity",
    description="Total number of suspicious activity detections",
    unit="1"
)
