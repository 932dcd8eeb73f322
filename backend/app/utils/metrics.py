# /app/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Flow Runner Metrics
bot_runs_counter = Counter('bot_runs_total', 'Bot flow runs', ['outcome'])
bot_steps_histogram = Histogram(
    'bot_run_steps', 'Steps executed per bot flow run', buckets=(0, 1, 2, 3, 5, 8, 13, 20, 50)
)
handler_failures_counter = Counter('bot_handler_failures_total', 'Node handler failures', ['node_type'])
outbound_sends_counter = Counter('bot_outbound_sends_total', 'Outbound sends requested by bot flows', ['platform', 'status'])
inbound_messages_counter = Counter('inbound_messages_total', 'Inbound messages received', ['platform', 'outcome'])

# Performance Metrics
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])

# Security Metrics
webhook_signature_counter = Counter('webhook_signature_verifications_total', 'Webhook signature verifications', ['status'])
