# dynajournal/infra/metrics/journal_metrics.py
"""Journal write/replay metrics."""

from prometheus_client import Counter, Histogram

journal_records_written = Counter(
    'dynajournal_records_written_total',
    'Records processed by write_messages',
    ['result']  # result: success/rejected
)

journal_rejections = Counter(
    'dynajournal_rejections_total',
    'Record rejections by cause',
    ['kind']
)

journal_replayed_records = Counter(
    'dynajournal_replayed_records_total',
    'Records delivered by replay'
)

journal_replay_pages = Counter(
    'dynajournal_replay_pages_total',
    'Query pages fetched by replay'
)

backend_calls = Counter(
    'dynajournal_backend_calls_total',
    'Backend calls by operation',
    ['operation', 'result']  # result: ok/rejected/error
)

backend_call_duration = Histogram(
    'dynajournal_backend_call_duration_seconds',
    'Backend call latency',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)
