"""Prometheus metrics definitions"""

from prometheus_client import Counter, Histogram, Gauge


# Training
model_training_runs = Counter(
    'model_training_runs_total',
    'Model training attempts',
    labelnames=['model_name', 'status']  # success, insufficient_data, rejected, error
)

model_training_duration = Histogram(
    'model_training_duration_seconds',
    'Time to train one model for one organization',
    labelnames=['model_name'],
    buckets=[0.05, 0.1, 0.5, 1, 5, 15, 60]
)

active_trainings = Gauge(
    'model_active_trainings',
    'Number of (organization, model) pairs currently training'
)

# Detection / inference
anomalies_detected = Counter(
    'spending_anomalies_detected_total',
    'Spending anomalies emitted by the anomaly model',
    labelnames=['anomaly_type', 'severity']
)

vendor_normalizations = Counter(
    'vendor_normalizations_total',
    'Vendor normalization attempts',
    labelnames=['outcome']  # matched, unmatched, no_model
)

account_mappings = Counter(
    'account_mappings_total',
    'Imported account mapping outcomes',
    labelnames=['status', 'source']
)

# Orchestration
analysis_duration = Histogram(
    'insight_analysis_duration_seconds',
    'Time to run a full organization analysis',
    buckets=[0.1, 0.5, 1, 5, 15, 60]
)

analysis_subtask_failures = Counter(
    'insight_analysis_subtask_failures_total',
    'Sub-analyses dropped from an aggregate because they failed',
    labelnames=['subtask']
)

# Storage
model_store_operations = Counter(
    'model_store_operations_total',
    'Model store reads and writes',
    labelnames=['operation', 'status']  # get/put/delete, success/failure/conflict/miss
)

model_cache_lookups = Counter(
    'model_cache_lookups_total',
    'In-process model cache lookups',
    labelnames=['result']  # hit, miss
)

redis_connection_healthy = Gauge(
    'redis_connection_healthy',
    'Whether Redis (model store) is alive (0/1)'
)

# LLM translator
llm_tokens_counter = Counter(
    'llm_tokens_used_total',
    'Total LLM tokens consumed',
    labelnames=['model_name']
)

llm_cost_counter = Counter(
    'llm_cost_dollars_total',
    'Total LLM cost in USD',
    labelnames=['model_name']
)

llm_api_latency = Histogram(
    'llm_api_latency_seconds',
    'Latency of LLM API calls',
    labelnames=['model_name'],
    buckets=[0.5, 1, 2, 5, 10, 30]
)

llm_rejected_prompts = Counter(
    'llm_rejected_prompts_total',
    'Prompts refused because they carried raw numeric data'
)
