"""
Pneuma - On-chain interaction layer for abstractkit.

Provides JSON-RPC clients (HTTP for queries, WebSocket for subscriptions),
ABI helpers, nonce sequencing, fee estimation, transaction building, event
filter compilation and push-subscription dispatch for Abstract and other
Ethereum-compatible chains.

Uses httpx + websockets + eth-account + eth-abi instead of the heavyweight web3.py.
"""
