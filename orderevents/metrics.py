"""
Prometheus metrics for the order-event pipeline.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
import psutil
import os
from functools import lru_cache
from . import __version__


class Metrics:
    """
    Centralized metrics for the orderevents service.
    """

    def __init__(self, service_name: str = "orderevents", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            registry=self.registry,
        )

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Pipeline metrics
        self.events_published_total = Counter(
            "orderevents_events_published_total",
            "Events published to a topic",
            ["topic", "event_type"],
            registry=self.registry,
        )

        self.event_size_bytes = Histogram(
            "orderevents_event_size_bytes",
            "Published event body size in bytes",
            ["topic"],
            registry=self.registry,
        )

        self.deliveries_total = Counter(
            "orderevents_deliveries_total",
            "Per-subscriber delivery outcomes",
            ["topic", "subscriber", "outcome"],
            registry=self.registry,
        )

        self.records_appended_total = Counter(
            "orderevents_records_appended_total",
            "Event records appended to the event store",
            ["domain"],
            registry=self.registry,
        )

        self.queue_messages_total = Counter(
            "orderevents_queue_messages_total",
            "Queue message transitions",
            ["queue", "outcome"],
            registry=self.registry,
        )

        self.dead_lettered_total = Counter(
            "orderevents_dead_lettered_total",
            "Messages moved to a dead-letter queue",
            ["queue"],
            registry=self.registry,
        )

        self.consumer_duration = Histogram(
            "orderevents_consumer_duration_seconds",
            "Consumer handler duration in seconds",
            ["queue"],
            registry=self.registry,
        )

        # System Metrics
        self._setup_process_metrics()

    def _setup_process_metrics(self):
        """Set up process-level metrics using psutil."""
        self.process_cpu_seconds = Counter(
            "process_cpu_seconds_total",
            "Total CPU time consumed by process",
            ["service"],
            registry=self.registry,
        )

        self.process_memory_bytes = Gauge(
            "process_resident_memory_bytes",
            "Resident memory size in bytes",
            ["service"],
            registry=self.registry,
        )

        self.process_open_fds = Gauge(
            "process_open_fds",
            "Number of open file descriptors",
            ["service"],
            registry=self.registry,
        )

        self._last_cpu_total = 0.0
        self.update_system_metrics()

    def update_system_metrics(self):
        """Update system metrics from psutil."""
        try:
            process = psutil.Process(os.getpid())

            cpu_times = process.cpu_times()
            cpu_total = cpu_times.user + cpu_times.system
            cpu_diff = cpu_total - self._last_cpu_total
            if cpu_diff > 0:
                self.process_cpu_seconds.labels(service=self.service_name).inc(cpu_diff)
            self._last_cpu_total = cpu_total

            memory_info = process.memory_info()
            self.process_memory_bytes.labels(service=self.service_name).set(memory_info.rss)

            try:
                self.process_open_fds.labels(service=self.service_name).set(process.num_fds())
            except AttributeError:
                # num_fds() not available on all platforms
                pass

        except psutil.Error:
            pass

    def record_event_published(self, topic: str, event_type: str, size_bytes: int):
        """Record an event publication."""
        self.events_published_total.labels(topic=topic, event_type=event_type).inc()
        self.event_size_bytes.labels(topic=topic).observe(size_bytes)

    def record_delivery(self, topic: str, subscriber: str, outcome: str):
        self.deliveries_total.labels(topic=topic, subscriber=subscriber, outcome=outcome).inc()

    def record_record_appended(self, domain: str):
        self.records_appended_total.labels(domain=domain).inc()

    def record_queue_outcome(self, queue: str, outcome: str):
        self.queue_messages_total.labels(queue=queue, outcome=outcome).inc()

    def record_dead_lettered(self, queue: str):
        self.dead_lettered_total.labels(queue=queue).inc()

    def observe_consumer_duration(self, queue: str, seconds: float):
        self.consumer_duration.labels(queue=queue).observe(seconds)


@lru_cache(maxsize=1)
def get_metrics() -> Metrics:
    """Process-wide metrics registry."""
    return Metrics(service_name="orderevents", version=__version__)
