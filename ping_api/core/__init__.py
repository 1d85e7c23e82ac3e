"""Core module - probe accounting engine.

Structure:
- domain/        → Sample, Gap, AggregateBucket
- line_parser    → raw probe line → ProbeEvent
- reconciler     → tool-local seq → logical seq
- ledger         → per-target counts, gaps, window, aggregates
- intervals      → interval boundaries and clock
- aggregator     → interval folding + periodic job
- broadcast      → fan-out to SSE subscribers
- monitor        → hot path wiring and history snapshots
"""
