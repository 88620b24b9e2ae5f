"""Match domain services: rules, engine, custody ledger and payouts.

This package holds the wagered Rock-Paper-Scissors protocol itself and is
imported by HTTP routes, socket handlers and CLI commands, keeping transport
concerns separated from the commit-reveal state machine and settlement math.
"""
