# /engagehub/utils/metrics.py

from prometheus_client import Counter, Histogram

# All Prometheus metrics used by the service live here.

# HTTP
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])

# Security
auth_attempts_counter = Counter('auth_attempts_total', 'Authentication attempts', ['status', 'role'])
webhook_signature_counter = Counter('webhook_signature_verifications_total', 'Webhook signature verifications', ['status'])

# Persistence
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])
cache_operations = Counter('cache_operations_total', 'Cache operations', ['operation', 'status'])

# Tracking pipeline
tracking_events_counter = Counter('tracking_events_total', 'Unified tracking events', ['category', 'status'])
gtm_sync_counter = Counter('gtm_tag_sync_total', 'GTM tag synchronisations', ['action'])
broadcast_deliveries_counter = Counter('tracking_broadcast_deliveries_total', 'Tracking broadcast deliveries', ['status'])

# External adapters
external_api_counter = Counter('external_api_requests_total', 'External API requests', ['service', 'status'])
external_api_latency = Histogram('external_api_latency_seconds', 'External API latency in seconds', ['service'])
circuit_breaker_transitions = Counter('circuit_breaker_transitions_total', 'Circuit breaker state changes', ['service', 'state'])
