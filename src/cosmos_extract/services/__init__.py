"""Report services: periods, commissions, aggregation, export and the run loop."""
