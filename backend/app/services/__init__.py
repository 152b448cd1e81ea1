"""
Services package.
Business logic of the allocation & rebalancing engine.

Service Layer:
- AssetRegistry: wallets/accounts behind one (kind, id) reference, append-only balances
- AllocationLedger: time-bounded ownership claims, <=100% per-asset invariant
- PortfolioValuator: per-client valuation snapshots
- AlertEngine: drift evaluation and alert lifecycle
- LifecycleGuard: asset deactivation gated on active allocations
- SyncIntakeService: entry point for sync collaborators, price-move alerts
- TransactionIntakeService: movements on assets, large-transaction alerts

All services take an AsyncSession and never commit: the caller wraps them in
backend.app.db.session.unit_of_work().
"""
