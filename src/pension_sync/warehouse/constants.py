"""Shared constants used by the warehouse SQL API client."""

STATEMENTS_PATH = "/api/v2/statements"
RETRY_STATUSES = {408, 429, 500, 502, 503, 504}
AUTH_STATUSES = {401, 403}
STATEMENT_RUNNING_STATUS = 202
MAX_POLL_INTERVAL_SECONDS = 10.0
CLIENTS_VIEW = "CLIENTS_VIEW"
PING_STATEMENT = "SELECT CURRENT_TIMESTAMP() AS CURRENT_TIMESTAMP"
