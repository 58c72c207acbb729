__all__ = [
    # Errors
    "AbstractKitError",
    "TransportError",
    "RpcError",
    "CapabilityError",
    "EstimationError",
    "SignatureError",
    "DecodeError",
    "SubscriptionError",
    "CompoundTransactionError",
    # Clients
    "Capability",
    "Client",
    "HttpClient",
    "WsClient",
    "dial",
    "dial_http",
    "dial_ws",
    # Transactions
    "NonceSequencer",
    "FeeEstimator",
    "FeeQuote",
    "apply_gas_buffer",
    "TransactionBuilder",
    "TransactionRequest",
    "SignedTransaction",
    # Events
    "FilterSpec",
    "compile_filter",
    "Log",
    "BlockHeader",
    "DecodedEvent",
    "decode_event",
    "SubscriptionManager",
    "Subscription",
    "SubscriptionState",
    "SubscriptionTerminated",
    # Tokens
    "ERC20",
    "ERC721",
    # Keys
    "Wallet",
    "recover_address",
    "verify_signature",
    "generate_eoa",
    "get_address",
    "load_private_key",
]

from .errors import (
    AbstractKitError,
    CapabilityError,
    CompoundTransactionError,
    DecodeError,
    EstimationError,
    RpcError,
    SignatureError,
    SubscriptionError,
    TransportError,
)
from .pneuma.events import BlockHeader, DecodedEvent, Log, decode_event
from .pneuma.fees import FeeEstimator, FeeQuote, apply_gas_buffer
from .pneuma.filters import FilterSpec, compile_filter
from .pneuma.nonce import NonceSequencer
from .pneuma.rpc import Capability, Client, HttpClient, dial, dial_http
from .pneuma.subscriptions import (
    Subscription,
    SubscriptionManager,
    SubscriptionState,
    SubscriptionTerminated,
)
from .pneuma.tokens import ERC20, ERC721
from .pneuma.tx import SignedTransaction, TransactionBuilder, TransactionRequest
from .pneuma.ws import WsClient, dial_ws
from .sigil.eth import (
    Wallet,
    generate_eoa,
    get_address,
    load_private_key,
    recover_address,
    verify_signature,
)
