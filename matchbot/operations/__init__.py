"""
Operations Layer

Business logic for the match lifecycle. Each module owns one stage and talks to
the database through short transactions, to Discord only through the
MatchGateway interface, and to the clock only through the TimerRegistry.

Architecture:
- Database layer: models, engine, sessions, sequence counters
- Operations layer: state transitions and their side effects
- Command layer: cogs and views that decode Discord input into operations

Modules:
- QueueOperations: join/leave and the start trigger
- ReadyCheckOperations: ready-check lifecycle
- MatchOperations: match start, captain votes, finalize, reverse, cancel
- VetoOperations: captain map veto
- AdminOperations: audited overrides
"""
