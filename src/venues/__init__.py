"""
Venue adapters for equities brokers, crypto exchanges and futures gateways.

Per-venue dialects normalize native wire formats into canonical records. A
connection manager owns the streaming session with exponential backoff, a REST
gateway signs requests, and adapter facades present one uniform surface per
venue family.
"""
