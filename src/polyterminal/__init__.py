"""polyterminal - live market-data synchronization for a prediction-market terminal.

This package is responsible for:
- Market catalog loading (aggregator backend)
- Live trade subscription over the order stream WebSocket
- Reconnection with bounded exponential backoff
- Orderbook + recent-trades snapshot polling with stale-response suppression
- The in-memory trade ledger and its derived buy/sell stats
"""

__version__ = "0.1.0"
