# Marks `stockledger.deps` as a real package so imports like
# `from stockledger.deps.auth import require_actor` work reliably.
