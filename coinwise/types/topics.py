"""
Centralized topic constants for the event bus.
"""

# Market data topics
T_PRICES = "mkt.prices"

# Session / ledger topics
T_SESSION = "session.state"
T_USER_STATE = "account.user_state"

# Competition topics
T_POOL = "competition.pool"

# Sync topics
T_SYNC = "sync.status"

# Control topics
T_LOG = "log.event"

ALL_TOPICS: tuple[str, ...] = (T_PRICES, T_SESSION, T_USER_STATE, T_POOL, T_SYNC, T_LOG)
