"""Business logic services.

Stores (rooms, messages, exits, linku_store) wrap persistence and never
commit. Cores (chat, linku) validate, orchestrate the stores, own the
transaction, and queue live events that are published after commit.
Route handlers call exactly one core or users function.
"""
