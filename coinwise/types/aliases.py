from typing import Any

# -------- Aliases (clarify intent) --------
UnixMillis = int
Symbol = str  # e.g., "BTCUSDT"
AccountId = str  # display-level account identifier (the sign-up email)
UserId = str  # stable identifier issued by the identity provider
StorePath = str  # e.g., "users/abc123", "competition/players/alice@x,com"
AuditRecord = dict[str, Any]
